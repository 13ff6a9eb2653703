# session/paths.py
"""Store layout and who may write where.

Every path the session layer writes has an owner tag. ``OwnedStore`` wraps
a ``SharedStore`` for one acting client and refuses writes outside that
client's ownership. This is a discipline check, not a lock and not a
security boundary: a client talking to the store directly can write
anything.
"""
from __future__ import annotations

import re
from typing import Any, Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from util.errors import OwnershipViolation
from util.store import Callback, SharedStore, Unsubscribe, join_path, split_path

ACTIVE_GAME = "activeGame"
USERS = "session/users"
LEADERBOARD = "session/leaderboard"
CHAT = "session/chat"
PRESENCE = "session/presence"
STARTING_BANKROLL = "session/settings/startingBankroll"
END_OF_SESSION = "session/endOfSession"

# owner tags
SELF = "self"
DEALER = "dealer"
ENGINE = "engine"
ANYONE = "anyone"


def game_state(kind) -> str:
    return f"games/{_kind(kind)}/state"


def game_bets(kind) -> str:
    return f"games/{_kind(kind)}/bets"


def ledger(kind, participant_id: str) -> str:
    return f"games/{_kind(kind)}/bets/{participant_id}"


def user(participant_id: str) -> str:
    return f"{USERS}/{participant_id}"


def leaderboard_entry(participant_id: str) -> str:
    return f"{LEADERBOARD}/{participant_id}"


def presence(participant_id: str) -> str:
    return f"{PRESENCE}/{participant_id}"


def _kind(kind) -> str:
    return getattr(kind, "value", kind)


# (pattern, owners); {pid} names the participant a SELF write must match
OWNERSHIP: List[Tuple[str, FrozenSet[str]]] = [
    (r"activeGame(/.*)?", frozenset({DEALER})),
    (r"games/[^/]+", frozenset({DEALER})),
    (r"games/[^/]+/state(/.*)?", frozenset({DEALER})),
    (r"games/[^/]+/bets", frozenset({DEALER})),
    (r"games/[^/]+/bets/(?P<pid>[^/]+)(/.*)?", frozenset({SELF, ENGINE, DEALER})),
    (r"session/users/(?P<pid>[^/]+)(/.*)?", frozenset({SELF, ENGINE, DEALER})),
    (r"session/leaderboard/(?P<pid>[^/]+)(/.*)?", frozenset({SELF, ENGINE, DEALER})),
    (r"session/leaderboard", frozenset({DEALER})),
    (r"session/chat", frozenset({DEALER})),
    (r"session/chat/[^/]+", frozenset({ANYONE})),
    (r"session/presence/(?P<pid>[^/]+)(/.*)?", frozenset({SELF})),
    (r"session/settings/startingBankroll", frozenset({DEALER})),
    (r"session/endOfSession(/.*)?", frozenset({DEALER})),
]

_COMPILED = [(re.compile(pattern + r"\Z"), owners) for pattern, owners in OWNERSHIP]


class Actor(NamedTuple):
    """The client performing writes: its participant id and granted roles."""
    participant_id: Optional[str]
    roles: FrozenSet[str] = frozenset()

    @classmethod
    def player(cls, participant_id: str) -> "Actor":
        return cls(participant_id, frozenset())

    @classmethod
    def dealer(cls, participant_id: str) -> "Actor":
        # the dealer's client also runs the payout engine
        return cls(participant_id, frozenset({DEALER, ENGINE}))

    @classmethod
    def observer(cls) -> "Actor":
        return cls(None, frozenset())

    @property
    def is_dealer(self) -> bool:
        return DEALER in self.roles


def owners_of(path: str) -> Tuple[FrozenSet[str], Optional[str]]:
    norm = "/".join(split_path(path))
    for pattern, owners in _COMPILED:
        m = pattern.match(norm)
        if m:
            return owners, m.groupdict().get("pid")
    return frozenset(), None


def may_write(actor: Actor, path: str) -> bool:
    owners, pid = owners_of(path)
    if ANYONE in owners and actor.participant_id:
        return True
    if owners & actor.roles:
        return True
    return SELF in owners and pid is not None and pid == actor.participant_id


class OwnedStore(SharedStore):
    """A store view bound to one actor; writes outside its ownership raise."""

    def __init__(self, store: SharedStore, actor: Actor):
        self.inner = store.inner if isinstance(store, OwnedStore) else store
        self.actor = actor

    def _guard(self, path: str) -> None:
        if not may_write(self.actor, path):
            raise OwnershipViolation(
                f"{self.actor.participant_id or 'observer'} may not write {path}"
            )

    def get(self, path: str) -> Any:
        return self.inner.get(path)

    def set(self, path: str, value: Any) -> None:
        self._guard(path)
        self.inner.set(path, value)

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        for key in changes:
            self._guard(join_path(path, key))
        self.inner.update(path, changes)

    def push(self, path: str, value: Any) -> str:
        self._guard(join_path(path, "x"))
        return self.inner.push(path, value)

    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        return self.inner.subscribe(path, callback)

    def as_actor(self, actor: Actor) -> "OwnedStore":
        return OwnedStore(self.inner, actor)
