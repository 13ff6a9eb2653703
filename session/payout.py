# session/payout.py
"""Settlement of one resolved round.

``PayoutEngine.settle`` is a pure function of (outcome, table, ledger
snapshot): it reads nothing and writes nothing, so the round controller can
compute every participant's result before the first bankroll write. Each bet
is rounded on its own, which is what makes the result independent of the
order bets are evaluated in.
"""
import logging
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, Field

from session.rules import LOSE, OPEN, PUSH, WIN, GameRules
from session.schema import LedgerEntry
from util.errors import ValidationError
from util.money import apply_multiplier

log = logging.getLogger("casino.payout")


class BetOutcome(BaseModel):
    bet_type: str
    stake: int
    decision: str
    returned: int = 0


class ParticipantSettlement(BaseModel):
    participant_id: str
    wagered: int = 0       # stakes cleared this round
    returned: int = 0      # credited to the bankroll
    net: int = 0
    remaining: Dict[str, int] = Field(default_factory=dict)
    bets: List[BetOutcome] = Field(default_factory=list)

    @property
    def decided(self) -> bool:
        return any(b.decision != OPEN for b in self.bets)


class RejectedBet(BaseModel):
    participant_id: str
    bet_type: Optional[str] = None
    stake: Any = None
    reason: str


class SettlementReport(BaseModel):
    game: str
    round_number: int
    result: str
    participants: Dict[str, ParticipantSettlement] = Field(default_factory=dict)
    rejected: List[RejectedBet] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    bet_totals: Dict[str, int] = Field(default_factory=dict)

    def breakdown(self) -> Dict[str, Dict[str, int]]:
        """Per bet type: total staked, total returned, winners and losers."""
        out: Dict[str, Dict[str, int]] = {}
        for ps in self.participants.values():
            for b in ps.bets:
                row = out.setdefault(b.bet_type, {"staked": 0, "returned": 0, "wins": 0, "losses": 0})
                row["staked"] += b.stake
                row["returned"] += b.returned
                if b.decision == WIN:
                    row["wins"] += 1
                elif b.decision == LOSE:
                    row["losses"] += 1
        return out


def _valid_stake(stake) -> bool:
    return isinstance(stake, int) and not isinstance(stake, bool) and stake > 0


class PayoutEngine:
    def __init__(self, rules: GameRules):
        self.rules = rules

    def settle_bets(self, bets: Dict[str, int], outcome, table) -> ParticipantSettlement:
        """Settle already-validated bets of one participant."""
        ps = ParticipantSettlement(participant_id="")
        for bet_type in sorted(bets):
            stake = bets[bet_type]
            verdict = self.rules.evaluate(bet_type, outcome, table)
            returned = 0
            if verdict.decision == WIN:
                returned = apply_multiplier(stake, verdict.multiplier)
                if verdict.keep:
                    ps.remaining[bet_type] = stake
                else:
                    ps.wagered += stake
            elif verdict.decision == PUSH:
                returned = stake
                ps.wagered += stake
            elif verdict.decision == LOSE:
                ps.wagered += stake
            else:
                ps.remaining[bet_type] = stake
            ps.returned += returned
            ps.bets.append(BetOutcome(bet_type=bet_type, stake=stake, decision=verdict.decision, returned=returned))
        ps.net = ps.returned - ps.wagered
        return ps

    def settle(self, outcome, table: Dict[str, Any], ledgers: Dict[str, Any],
               activation_id: Optional[str] = None, round_number: int = 0) -> SettlementReport:
        report = SettlementReport(
            game=self.rules.name,
            round_number=round_number,
            result=self.rules.history_token(outcome),
        )
        for pid in sorted(ledgers):
            raw = ledgers[pid]
            try:
                entry = LedgerEntry.model_validate({**(raw or {}), "participant_id": pid})
            except (pydantic.ValidationError, TypeError):
                report.rejected.append(RejectedBet(participant_id=pid, reason="malformed ledger entry"))
                continue

            if activation_id is not None and entry.activation_id != activation_id:
                for bet_type, stake in entry.active.items():
                    report.rejected.append(RejectedBet(
                        participant_id=pid, bet_type=bet_type, stake=stake, reason="stale activation"))
                if entry.active:
                    report.participants[pid] = ParticipantSettlement(participant_id=pid)
                continue

            bets: Dict[str, int] = {}
            for bet_type, stake in entry.active.items():
                if not _valid_stake(stake):
                    report.rejected.append(RejectedBet(
                        participant_id=pid, bet_type=bet_type, stake=stake, reason="bad stake"))
                    continue
                try:
                    self.rules.rule_for(bet_type)
                except ValidationError as e:
                    report.rejected.append(RejectedBet(
                        participant_id=pid, bet_type=bet_type, stake=stake, reason=str(e)))
                    continue
                bets[bet_type] = stake
                report.bet_totals[bet_type] = report.bet_totals.get(bet_type, 0) + stake

            if not bets and not entry.active:
                continue
            ps = self.settle_bets(bets, outcome, table)
            ps.participant_id = pid
            report.participants[pid] = ps

        if report.rejected:
            log.warning("%s round %s: %d bets forfeited", self.rules.name, round_number, len(report.rejected))
        return report
