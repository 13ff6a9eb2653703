# session/overlay.py
"""Read-only view of the session for a broadcast overlay."""
import logging
from typing import Any, Callable, Dict, List

from session import paths
from session.paths import Actor, OwnedStore
from session.registry import SessionRegistry
from session.schema import ActiveGame, EndOfSession, GameRound, dump
from session.subscriptions import watch
from util.errors import StoreUnavailable
from util.store import SharedStore

log = logging.getLogger("casino.overlay")

FOLLOWED = [
    paths.ACTIVE_GAME,
    "games",
    paths.LEADERBOARD,
    paths.PRESENCE,
    paths.STARTING_BANKROLL,
    paths.END_OF_SESSION,
]


class OverlayReader:
    def __init__(self, store: SharedStore):
        # 觀察者沒有任何寫入權限
        self.store = OwnedStore(store, Actor.observer())
        self.registry = SessionRegistry(self.store)
        self._subs: List[Any] = []

    def _live_bet_totals(self, rnd: GameRound) -> Dict[str, int]:
        ledgers = self.store.get(paths.game_bets(rnd.game_kind)) or {}
        totals: Dict[str, int] = {}
        for entry in ledgers.values():
            if not isinstance(entry, dict) or entry.get("activation_id") != rnd.activation_id:
                continue
            for bet_type, stake in (entry.get("active") or {}).items():
                if isinstance(stake, int) and stake > 0:
                    totals[bet_type] = totals.get(bet_type, 0) + stake
        return totals

    def snapshot(self) -> Dict[str, Any]:
        raw_active = self.store.get(paths.ACTIVE_GAME)
        active = ActiveGame.model_validate(raw_active) if raw_active else None
        state = None
        live = {}
        if active is not None:
            raw_state = self.store.get(paths.game_state(active.game_kind))
            if raw_state:
                rnd = GameRound.model_validate(raw_state)
                state = dump(rnd)
                live = self._live_bet_totals(rnd) or dict(rnd.bet_totals)
        raw_end = self.store.get(paths.END_OF_SESSION)
        return {
            "active_game": dump(active) if active else None,
            "state": state,
            "live_bet_totals": live,
            "leaderboard": [dump(e) for e in self.registry.leaderboard()],
            "active_players": self.registry.active_count(),
            "starting_bankroll": self.registry.starting_bankroll(),
            "end_of_session": dump(EndOfSession.model_validate(raw_end)) if raw_end else None,
        }

    def follow(self, callback: Callable[[Dict[str, Any]], None], interval: float = None) -> "OverlayReader":
        def refresh(_value):
            try:
                callback(self.snapshot())
            except StoreUnavailable as e:
                log.warning("overlay refresh failed: %s", e)

        self._subs = [watch(self.store, path, refresh, interval) for path in FOLLOWED]
        return self

    def stop(self) -> None:
        for sub in self._subs:
            sub.stop()
        self._subs = []
