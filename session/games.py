# session/games.py
import threading
from typing import Dict, Tuple

from baccarat.logic import RULES as BACCARAT
from craps.logic import RULES as CRAPS
from roulette.logic import RULES as ROULETTE
from session.schema import GameKind
from util.errors import ValidationError

GAMES = {
    GameKind.wheel: ROULETTE,
    GameKind.dice: CRAPS,
    GameKind.cards: BACCARAT,
}


def rules_for(kind):
    try:
        return GAMES[GameKind(kind)]
    except ValueError:
        raise ValidationError(f"unknown game {kind!r}") from None


_locks: Dict[Tuple[int, GameKind], threading.RLock] = {}
_locks_guard = threading.Lock()


def state_lock(store, kind) -> threading.RLock:
    """Lock shared by every writer of one game's state and ledgers in this process.

    Keyed by the underlying store, so an ``OwnedStore`` for the dealer and
    one for the countdown ticker contend for the same lock.
    """
    key = (id(getattr(store, "inner", store)), GameKind(getattr(kind, "value", kind)))
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock
