# session/dealer.py
"""Dealer console: game selection, round control and bankroll administration.

The dealer secret is a shared password checked on the client. Anyone with
write access to the store can do what the console does; the gate only keeps
honest players out of the dealer screens.
"""
import hmac
import logging
from typing import List, Optional

from session import paths
from session.paths import Actor, OwnedStore
from session.payout import SettlementReport
from session.registry import ALL, SessionRegistry
from session.rounds import Countdown, RoundController
from session.schema import ActiveGame, EndOfSession, GameRound, Participant, Role
from util import config
from util.clock import now_ms
from util.errors import Unauthorized, ValidationError
from util.store import SharedStore

log = logging.getLogger("casino.dealer")


def check_secret(password: str, secret: str = None) -> bool:
    secret = config.DEALER_SECRET if secret is None else secret
    return hmac.compare_digest((password or "").encode(), secret.encode())


class DealerConsole:
    def __init__(self, store: SharedStore, participant_id: str, name: str = "Dealer",
                 secret: str = None, clock=now_ms):
        self.participant_id = participant_id
        self.name = name
        self.secret = secret
        self.clock = clock
        self.store = OwnedStore(store, Actor.player(participant_id))
        self._countdown: Optional[Countdown] = None

    # ---- login ----
    @property
    def logged_in(self) -> bool:
        return self.store.actor.is_dealer

    @classmethod
    def resume(cls, store: SharedStore, participant_id: str, name: str = "Dealer", clock=now_ms) -> "DealerConsole":
        """Console for a dealer already authenticated elsewhere (e.g. by token)."""
        console = cls(store, participant_id, name, clock=clock)
        console.store = console.store.as_actor(Actor.dealer(participant_id))
        return console

    def login(self, password: str) -> Participant:
        if not check_secret(password, self.secret):
            log.warning("dealer login refused for %s", self.participant_id)
            raise Unauthorized("wrong dealer password")
        existing = self.registry.find(self.participant_id)
        if existing is not None and existing.role != Role.dealer:
            # 玩家帳號不能兼任荷官
            raise ValidationError(f"{self.participant_id} is already registered as a player")
        self.store = self.store.as_actor(Actor.dealer(self.participant_id))
        log.info("dealer login: %s", self.participant_id)
        return self.registry.register(self.participant_id, self.name, role=Role.dealer)

    def _require(self) -> None:
        if not self.logged_in:
            raise Unauthorized("dealer login required")

    @property
    def registry(self) -> SessionRegistry:
        return SessionRegistry(self.store, self.clock)

    # ---- game selection ----
    def active_game(self) -> Optional[ActiveGame]:
        raw = self.store.get(paths.ACTIVE_GAME)
        return ActiveGame.model_validate(raw) if raw else None

    def controller(self, kind=None) -> RoundController:
        self._require()
        if kind is None:
            active = self.active_game()
            if active is None:
                raise ValidationError("no game is active")
            kind = active.game_kind
        return RoundController(self.store, kind, self.registry, self.clock)

    def activate(self, kind, betting_window: int = None, mode: str = None) -> GameRound:
        self._require()
        current = self.active_game()
        if current is not None:
            raise ValidationError(f"{current.game_kind.value} is already active")
        if kind is None:
            raise ValidationError("choose a game to activate")
        ctl = self.controller(kind)
        self.store.set(paths.END_OF_SESSION, None)
        rnd = ctl.open(betting_window, mode)
        self.registry.post_system_message(f"{ctl.rules.name.title()} is open, place your bets")
        return rnd

    def deactivate(self) -> EndOfSession:
        ctl = self.controller()
        self.stop_countdown()
        snapshot = ctl.deactivate()
        self.registry.post_system_message(f"{ctl.rules.name.title()} closed")
        return snapshot

    # ---- rounds ----
    def start_round(self) -> GameRound:
        return self.controller().start_round()

    def close_betting(self) -> GameRound:
        return self.controller().close_betting()

    def tick(self) -> GameRound:
        return self.controller().tick()

    def resolve(self, outcome=None) -> SettlementReport:
        ctl = self.controller()
        if outcome is None:
            outcome = ctl.rules.draw_outcome(ctl.state().table)
        return ctl.resolve(outcome)

    def state(self) -> GameRound:
        return self.controller().state()

    def run_countdown(self, interval: float = 1.0) -> Countdown:
        self.stop_countdown()
        ctl = self.controller()
        self._countdown = Countdown(ctl.tick, interval, name=f"countdown-{ctl.kind.value}").start()
        return self._countdown

    def stop_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.stop()
            self._countdown = None

    # ---- bankroll administration ----
    def set_starting_bankroll(self, amount: int) -> int:
        self._require()
        return self.registry.set_starting_bankroll(amount)

    def reset_all(self, starting_bankroll: int = None) -> List[Participant]:
        self._require()
        reg = self.registry
        amount = starting_bankroll if starting_bankroll is not None else reg.starting_bankroll()
        players = reg.reset_all(amount)
        reg.post_system_message(f"All bankrolls reset to {amount}")
        return players

    def grant_bonus(self, recipient: str, amount: int) -> List[Participant]:
        self._require()
        reg = self.registry
        players = reg.grant_bonus(recipient, amount)
        who = "everyone" if recipient == ALL else players[0].name
        reg.post_system_message(f"Bonus of {amount} chips to {who}")
        return players

    def clear_chat(self) -> None:
        self._require()
        self.registry.clear_chat()
