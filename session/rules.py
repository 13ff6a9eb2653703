# session/rules.py
"""Common shape of a game's bet table.

A game module exposes one ``GameRules`` subclass. Each bet type maps to a
rule ``(outcome, table) -> Verdict``; the payout engine only ever sees
verdicts, so all three games share one settlement path.
"""
from __future__ import annotations

from fractions import Fraction
from typing import Any, Callable, Dict, NamedTuple, Optional

from util.errors import ValidationError

WIN = "win"
LOSE = "lose"
PUSH = "push"
OPEN = "open"


class Verdict(NamedTuple):
    decision: str
    # WIN: total return per unit staked; WIN with keep: profit per unit staked
    multiplier: Fraction = Fraction(0)
    keep: bool = False


def win(multiplier) -> Verdict:
    return Verdict(WIN, Fraction(multiplier))


def win_and_keep(profit) -> Verdict:
    return Verdict(WIN, Fraction(profit), keep=True)


def lose() -> Verdict:
    return Verdict(LOSE)


def push() -> Verdict:
    return Verdict(PUSH)


def still_open() -> Verdict:
    return Verdict(OPEN)


def decide(hit: bool, multiplier) -> Verdict:
    return win(multiplier) if hit else lose()


Rule = Callable[[Any, Dict[str, Any]], Verdict]


class GameRules:
    """Base for a game's outcome parsing and bet table."""

    kind = None
    name = ""

    def initial_table(self, mode: Optional[str] = None) -> Dict[str, Any]:
        if mode:
            raise ValidationError(f"{self.name} has no table mode {mode!r}")
        return {}

    def parse_outcome(self, raw: Any):
        raise NotImplementedError

    def rule_for(self, bet_type: str) -> Rule:
        """Rule for ``bet_type``; ``ValidationError`` when the game has no such bet."""
        raise NotImplementedError

    def check_bet(self, bet_type: str, table: Dict[str, Any]) -> None:
        """Raise ``ValidationError`` if ``bet_type`` cannot be staked right now."""
        self.rule_for(bet_type)

    def evaluate(self, bet_type: str, outcome, table: Dict[str, Any]) -> Verdict:
        return self.rule_for(bet_type)(outcome, table)

    def advance_table(self, table: Dict[str, Any], outcome) -> Dict[str, Any]:
        return dict(table)

    def history_token(self, outcome) -> str:
        raise NotImplementedError

    def describe(self, outcome) -> str:
        return self.history_token(outcome)

    def draw_outcome(self, table: Dict[str, Any] = None):
        raise NotImplementedError
