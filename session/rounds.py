# session/rounds.py
"""Round lifecycle for the active game.

betting --(countdown 0 | close_betting)--> locked --(resolve)--> resolved
resolved --(start_round)--> betting; betting may also be resolved directly.

Only the dealer's client drives a round. Every write to
``games/{kind}/state`` from this process happens under ``state_lock``, so
the countdown ticker and a dealer request never interleave a
read-modify-write of the same round.

Settlement writes each participant's ledger once: the settled bets leave
``active`` and the round's return lands in ``owed`` together. The bankroll
credit follows from ``owed``. If that ledger write fails, the participant
goes into the round's ``carryover`` and the next resolve replays it before
settling anything else for them.
"""
import logging
import threading
import uuid
from typing import Any, Callable, Dict, Optional

from session import paths
from session.games import rules_for, state_lock
from session.ledger import BetLedger
from session.payout import PayoutEngine, SettlementReport
from session.registry import SessionRegistry
from session.schema import (
    ActiveGame,
    BetHistoryItem,
    Carryover,
    EndOfSession,
    GameRound,
    OwedSettlement,
    Phase,
    dump,
)
from util import config
from util.clock import now_ms
from util.errors import NotFoundError, StoreUnavailable, Unauthorized, ValidationError
from util.store import SharedStore

log = logging.getLogger("casino.rounds")


def _subtract(active: Dict[str, Any], cleared: Dict[str, int]) -> Dict[str, Any]:
    out = {}
    for bet_type, stake in (active or {}).items():
        left = stake - cleared.get(bet_type, 0) if isinstance(stake, int) else stake
        if left:
            out[bet_type] = left
    return out


class RoundController:
    def __init__(self, store: SharedStore, kind, registry: SessionRegistry = None,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.rules = rules_for(kind)
        self.kind = self.rules.kind
        self.registry = registry or SessionRegistry(store, clock)
        self.clock = clock
        self.engine = PayoutEngine(self.rules)
        self.lock = state_lock(store, self.kind)

    def _require_dealer(self) -> None:
        actor = getattr(self.store, "actor", None)
        if actor is not None and not actor.is_dealer:
            raise Unauthorized("dealer only")

    def state(self) -> GameRound:
        raw = self.store.get(paths.game_state(self.kind))
        if not raw:
            raise ValidationError(f"{self.rules.name} is not active")
        return GameRound.model_validate(raw)

    def _save(self, rnd: GameRound) -> GameRound:
        rnd.updated_at = self.clock()
        self.store.set(paths.game_state(self.kind), dump(rnd))
        return rnd

    # ---- activation ----
    def open(self, betting_window: int = None, mode: str = None) -> GameRound:
        """Write a fresh round for a new activation and point the selector at it."""
        self._require_dealer()
        window = betting_window or config.BETTING_WINDOW_SECONDS
        if window <= 0:
            raise ValidationError("betting window must be positive")
        rnd = GameRound(
            game_kind=self.kind,
            activation_id=uuid.uuid4().hex,
            betting_window=window,
            betting_window_remaining=window,
            table=self.rules.initial_table(mode),
        )
        with self.lock:
            self._save(rnd)
            self.store.set(paths.ACTIVE_GAME, dump(ActiveGame(game_kind=self.kind, activated_at=self.clock())))
        log.info("%s activated (%s)", self.rules.name, rnd.activation_id)
        return rnd

    def deactivate(self) -> EndOfSession:
        self._require_dealer()
        with self.lock:
            snapshot = EndOfSession(
                players=self.registry.roster(),
                starting_bankroll=self.registry.starting_bankroll(),
                timestamp=self.clock(),
            )
            self.store.set(paths.END_OF_SESSION, dump(snapshot))
            self.store.set(paths.ACTIVE_GAME, None)
            self.store.set(paths.game_state(self.kind), None)
        log.info("%s deactivated, %d players in final standings", self.rules.name, len(snapshot.players))
        return snapshot

    # ---- phases ----
    def start_round(self) -> GameRound:
        self._require_dealer()
        with self.lock:
            rnd = self.state()
            if rnd.phase != Phase.resolved:
                raise ValidationError(f"cannot start a round while {rnd.phase.value}")
            rnd.phase = Phase.betting
            rnd.outcome = None
            rnd.betting_window_remaining = rnd.betting_window
            return self._save(rnd)

    def tick(self) -> GameRound:
        self._require_dealer()
        with self.lock:
            rnd = self.state()
            if rnd.phase != Phase.betting:
                return rnd
            # 讀完之後若已被結算或換局，就不要把舊資料寫回去
            latest = self.store.get(paths.game_state(self.kind)) or {}
            if (latest.get("phase") != Phase.betting.value
                    or latest.get("round_number", 0) != rnd.round_number
                    or latest.get("activation_id") != rnd.activation_id):
                return GameRound.model_validate(latest) if latest else rnd
            rnd.betting_window_remaining = max(0, latest.get("betting_window_remaining", 1) - 1)
            rnd.updated_at = self.clock()
            changes = {"betting_window_remaining": rnd.betting_window_remaining, "updated_at": rnd.updated_at}
            if rnd.betting_window_remaining == 0:
                rnd.phase = Phase.locked
                changes["phase"] = Phase.locked.value
                log.info("%s round %d: betting closed", self.rules.name, rnd.round_number)
            self.store.update(paths.game_state(self.kind), changes)
            return rnd

    def close_betting(self) -> GameRound:
        self._require_dealer()
        with self.lock:
            rnd = self.state()
            if rnd.phase != Phase.betting:
                raise ValidationError(f"betting is not open ({rnd.phase.value})")
            rnd.phase = Phase.locked
            rnd.betting_window_remaining = 0
            return self._save(rnd)

    # ---- resolution ----
    def resolve(self, raw_outcome) -> SettlementReport:
        self._require_dealer()
        with self.lock:
            return self._resolve(raw_outcome)

    def _resolve(self, raw_outcome) -> SettlementReport:
        rnd = self.state()
        if rnd.phase not in (Phase.betting, Phase.locked):
            raise ValidationError("round already resolved")
        outcome = self.rules.parse_outcome(raw_outcome)

        if rnd.phase == Phase.betting:
            # 先鎖盤，避免有人在結算時還在確認下注
            rnd.phase = Phase.locked
            rnd.betting_window_remaining = 0
            self._save(rnd)

        ledgers = self.store.get(paths.game_bets(self.kind)) or {}
        carry = rnd.carryover
        view = dict(ledgers)
        for pid, c in carry.items():
            if isinstance(ledgers.get(pid), dict):
                view[pid] = {**ledgers[pid], "active": _subtract(ledgers[pid].get("active"), c.cleared)}
        report = self.engine.settle(outcome, rnd.table, view, rnd.activation_id, rnd.round_number)
        settlement_id = f"{rnd.activation_id}-{rnd.round_number}"
        now = self.clock()
        book = BetLedger(self.store, self.kind, self.registry)
        carryover: Dict[str, Carryover] = {}

        owing = {pid for pid, raw in ledgers.items() if isinstance(raw, dict) and raw.get("owed")}
        for pid in sorted(set(report.participants) | set(carry) | owing):
            ps = report.participants.get(pid)
            c = carry.get(pid) or Carryover()
            if ps is not None or pid in carry:
                owed = dict(c.owed)
                cleared = dict(c.cleared)
                if ps is not None:
                    active = ps.remaining
                    if ps.decided or ps.returned:
                        owed[settlement_id] = OwedSettlement(
                            game_kind=self.kind,
                            round_number=rnd.round_number,
                            returned=ps.returned,
                            history=BetHistoryItem(
                                game_kind=self.kind,
                                round_number=rnd.round_number,
                                result=report.result,
                                wagered=ps.wagered,
                                returned=ps.returned,
                                net=ps.net,
                                timestamp=now,
                            ) if ps.decided else None,
                        )
                    for b in ps.bets:
                        if b.bet_type not in ps.remaining:
                            cleared[b.bet_type] = cleared.get(b.bet_type, 0) + b.stake
                else:
                    active = _subtract((ledgers.get(pid) or {}).get("active"), cleared)
                changes: Dict[str, Any] = {"active": active or None}
                changes.update({f"owed/{sid}": dump(o) for sid, o in owed.items()})
                try:
                    # 先清注單、記欠款，同一筆寫入
                    self.store.update(paths.ledger(self.kind, pid), changes)
                except StoreUnavailable as e:
                    carryover[pid] = Carryover(cleared=cleared, owed=owed)
                    report.failed.append(pid)
                    log.error("ledger for %s in %s round %d not written, carried to the next resolve: %s",
                              pid, self.rules.name, rnd.round_number, e)
                    continue
            try:
                book.settle_owed(pid)
            except (StoreUnavailable, NotFoundError) as e:
                if pid not in report.failed:
                    report.failed.append(pid)
                log.error("credit for %s in %s round %d stays owed on the ledger: %s",
                          pid, self.rules.name, rnd.round_number, e)

        rnd.outcome = dump(outcome)
        rnd.phase = Phase.resolved
        rnd.result_history = ([report.result] + rnd.result_history)[:config.HISTORY_CAPACITY]
        rnd.table = self.rules.advance_table(rnd.table, outcome)
        rnd.bet_totals = report.bet_totals
        rnd.carryover = carryover
        rnd.round_number += 1
        self._save(rnd)
        log.info("%s round %d resolved: %s (%d participants, %d failed)",
                 self.rules.name, report.round_number, report.result,
                 len(report.participants), len(report.failed))

        try:
            self.registry.post_system_message(
                f"{self.rules.name.title()} #{report.round_number}: {self.rules.describe(outcome)}")
        except StoreUnavailable as e:
            log.warning("result announcement failed: %s", e)
        return report


def tick_active(store: SharedStore, clock: Callable[[], int] = now_ms) -> Optional[GameRound]:
    """Tick whichever game the selector points at; None when nothing is active."""
    raw = store.get(paths.ACTIVE_GAME)
    if not raw:
        return None
    kind = ActiveGame.model_validate(raw).game_kind
    try:
        return RoundController(store, kind, clock=clock).tick()
    except ValidationError:
        # 選擇器還在但牌局剛被關掉
        return None


class Countdown:
    """Calls ``tick`` once per ``interval`` on a daemon thread.

    With ``stop_when_inactive`` the thread ends as soon as ``tick`` raises
    ``ValidationError`` (the game it was bound to is gone).
    """

    def __init__(self, tick: Callable[[], Any], interval: float = 1.0,
                 name: str = "countdown", stop_when_inactive: bool = True):
        self.tick = tick
        self.interval = interval
        self.name = name
        self.stop_when_inactive = stop_when_inactive
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "Countdown":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except ValidationError:
                if self.stop_when_inactive:
                    break
            except StoreUnavailable as e:
                log.warning("countdown tick failed: %s", e)
