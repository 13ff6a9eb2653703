# session/ledger.py
"""Per-participant pending and active bets for one game.

A participant's client is the only writer of its own entry while the round
is in ``betting``; the payout engine is the only writer after that. Stakes
are debited at commit, not at resolution, so a round the dealer never
resolves keeps the money, the same as walking away from a real table.

Returns the engine has decided are written to the entry's ``owed`` map in
the same write that clears the settled bets, then moved to the bankroll by
``settle_owed``. A credit whose bankroll write failed stays in ``owed`` and
is replayed on the next commit or resolve.
"""
import logging
from typing import Dict, Tuple

from session import paths
from session.games import rules_for, state_lock
from session.registry import SessionRegistry
from session.schema import GameRound, LedgerEntry, Phase, dump
from util import config
from util.errors import StoreUnavailable, ValidationError
from util.money import is_chip_amount
from util.store import SharedStore, join_path

log = logging.getLogger("casino.ledger")


class BetLedger:
    def __init__(self, store: SharedStore, kind, registry: SessionRegistry = None):
        self.store = store
        self.rules = rules_for(kind)
        self.kind = self.rules.kind
        self.registry = registry or SessionRegistry(store)

    def _round(self) -> GameRound:
        raw = self.store.get(paths.game_state(self.kind))
        if not raw:
            raise ValidationError(f"{self.rules.name} is not active")
        return GameRound.model_validate(raw)

    def _betting_round(self) -> GameRound:
        rnd = self._round()
        if rnd.phase != Phase.betting:
            raise ValidationError(f"betting is closed ({rnd.phase.value})")
        return rnd

    def _still_betting(self, rnd: GameRound) -> None:
        latest = self.store.get(paths.game_state(self.kind)) or {}
        if (latest.get("phase") != Phase.betting.value
                or latest.get("round_number", 0) != rnd.round_number
                or latest.get("activation_id") != rnd.activation_id):
            raise ValidationError("betting closed before the bets were confirmed")

    def view(self, participant_id: str) -> LedgerEntry:
        raw = self.store.get(paths.ledger(self.kind, participant_id))
        if not raw:
            return LedgerEntry(participant_id=participant_id)
        return LedgerEntry.model_validate({**raw, "participant_id": participant_id})

    def _live_entry(self, participant_id: str, rnd: GameRound) -> Tuple[LedgerEntry, bool]:
        entry = self.view(participant_id)
        if entry.activation_id != rnd.activation_id:
            # 上一場留下的注單作廢（已扣款），欠款照付
            fresh = LedgerEntry(participant_id=participant_id, activation_id=rnd.activation_id,
                                owed=entry.owed)
            return fresh, True
        return entry, False

    def _path(self, participant_id: str) -> str:
        return paths.ledger(self.kind, participant_id)

    def _save(self, entry: LedgerEntry) -> None:
        self.store.set(self._path(entry.participant_id), dump(entry))

    def entries(self) -> Dict[str, dict]:
        return self.store.get(paths.game_bets(self.kind)) or {}

    # ---- pending ----
    def stage_many(self, participant_id: str, bets: Dict[str, int]) -> LedgerEntry:
        """Add every stake in ``bets`` or none of them."""
        with state_lock(self.store, self.kind):
            rnd = self._betting_round()
            entry, reset = self._live_entry(participant_id, rnd)
            if entry.committed_round == rnd.round_number:
                raise ValidationError("bets already confirmed for this round")

            for bet_type, amount in bets.items():
                self.rules.check_bet(bet_type, rnd.table)
                if not is_chip_amount(amount, config.MIN_BET_UNIT):
                    raise ValidationError(f"stake must be a positive multiple of {config.MIN_BET_UNIT}")

            bankroll = self.registry.get(participant_id).bankroll
            if entry.pending_total() + sum(bets.values()) > bankroll:
                raise ValidationError("insufficient bankroll")

            for bet_type, amount in bets.items():
                entry.pending[bet_type] = entry.pending.get(bet_type, 0) + amount
            if reset:
                self._save(entry)
            else:
                self.store.update(self._path(participant_id), {"pending": dict(entry.pending)})
            return entry

    def stage(self, participant_id: str, bet_type: str, amount: int) -> LedgerEntry:
        return self.stage_many(participant_id, {bet_type: amount})

    def clear(self, participant_id: str, bet_type: str = None) -> LedgerEntry:
        entry = self.view(participant_id)
        if bet_type is None:
            entry.pending = {}
        else:
            entry.pending.pop(bet_type, None)
        self.store.update(self._path(participant_id), {"pending": dict(entry.pending) or None})
        return entry

    def repeat_last(self, participant_id: str) -> LedgerEntry:
        last = self.view(participant_id).last_committed
        if not last:
            raise ValidationError("no previous bets to repeat")
        return self.stage_many(participant_id, dict(last))

    # ---- commit ----
    def commit(self, participant_id: str) -> LedgerEntry:
        with state_lock(self.store, self.kind):
            rnd = self._betting_round()
            self.settle_owed(participant_id)
            entry, reset = self._live_entry(participant_id, rnd)
            if entry.committed_round == rnd.round_number:
                raise ValidationError("bets already confirmed for this round")
            staged = {k: v for k, v in entry.pending.items() if v}
            if not staged:
                raise ValidationError("no bets to confirm")
            self._still_betting(rnd)

            total = sum(staged.values())
            self.registry.debit(participant_id, total)

            for bet_type, amount in staged.items():
                entry.active[bet_type] = entry.active.get(bet_type, 0) + amount
            entry.pending = {}
            entry.last_committed = staged
            entry.committed_round = rnd.round_number
            try:
                if reset:
                    self._save(entry)
                else:
                    # 只寫自己動到的欄位，其他注單留給派彩引擎
                    changes = {"pending": None, "last_committed": staged, "committed_round": rnd.round_number}
                    changes.update({f"active/{bet_type}": entry.active[bet_type] for bet_type in staged})
                    self.store.update(self._path(participant_id), changes)
            except StoreUnavailable:
                log.error("commit for %s lost its ledger write, refunding %d", participant_id, total)
                self.registry.refund(participant_id, total)
                raise
            log.info("%s committed %d on %s round %d", participant_id, total, self.rules.name, rnd.round_number)
            return entry

    # ---- owed returns ----
    def settle_owed(self, participant_id: str) -> int:
        """Move every recorded return into the bankroll; returns the chips credited.

        Each credit carries its settlement id, so a replay after a failed
        clean-up never pays twice.
        """
        owed = self.view(participant_id).owed
        credited = 0
        for settlement_id, item in sorted(owed.items(), key=lambda kv: (kv[1].round_number, kv[0])):
            before = self.registry.get(participant_id)
            p = self.registry.apply_settlement(participant_id, item.returned, item.history,
                                               settlement_id=settlement_id)
            credited += p.bankroll - before.bankroll
            self.store.set(join_path(self._path(participant_id), "owed", settlement_id), None)
        if owed:
            log.info("%s: applied %d owed settlements on %s (%d chips)",
                     participant_id, len(owed), self.rules.name, credited)
        return credited
