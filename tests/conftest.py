import pytest

from session.dealer import DealerConsole
from session.ledger import BetLedger
from session.paths import Actor, OwnedStore
from session.registry import SessionRegistry
from util.store import InMemoryStore

SECRET = "table-secret"


class Clock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class Player:
    """One player's client: its own store view, registry and ledgers."""

    def __init__(self, store, participant_id, name, clock):
        self.id = participant_id
        self.name = name
        self.store = OwnedStore(store, Actor.player(participant_id))
        self.registry = SessionRegistry(self.store, clock)
        self.registry.register(participant_id, name)

    def ledger(self, kind) -> BetLedger:
        return BetLedger(self.store, kind, self.registry)

    @property
    def bankroll(self) -> int:
        return self.registry.get(self.id).bankroll

    def bet(self, kind, bets):
        ledger = self.ledger(kind)
        ledger.stage_many(self.id, bets)
        return ledger.commit(self.id)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def dealer(store, clock):
    console = DealerConsole(store, "dealer", "Dealer", secret=SECRET, clock=clock)
    console.login(SECRET)
    return console


@pytest.fixture
def join(store, clock):
    def _join(participant_id, name=None):
        return Player(store, participant_id, name or participant_id.title(), clock)
    return _join
