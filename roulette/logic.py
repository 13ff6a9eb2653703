# roulette/logic.py
"""American roulette: pockets 0, 00 and 1..36.

Bet keys are ``type`` or ``type-value``: ``straight-17``, ``split-14,17``,
``street-1,2,3``, ``corner-1,2,4,5``, ``line-1,2,3,4,5,6``, ``dozen-2nd``,
``column-3``, ``red``. Inside bets are checked against the table layout
when staked, so a rule only ever sees numbers that can actually win together.
"""
import random

import pydantic

from session.rules import GameRules, decide
from session.schema import GameKind
from util.errors import ValidationError
from .schema import RouletteOutcome

POCKETS = ["0", "00"] + [str(n) for n in range(1, 37)]
RED_NUMBERS = {1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36}
ZEROS = ("0", "00")

DOZENS = {"1st": (1, 12), "2nd": (13, 24), "3rd": (25, 36)}

# 總回收倍數（含本金）
RETURNS = {
    "straight": 36,
    "split": 18,
    "street": 12,
    "corner": 9,
    "line": 6,
    "dozen": 3,
    "column": 3,
    "red": 2,
    "black": 2,
    "even": 2,
    "odd": 2,
    "low": 2,
    "high": 2,
}


def color_of(pocket: str) -> str:
    if pocket in ZEROS:
        return "green"
    return "red" if int(pocket) in RED_NUMBERS else "black"


def _row(n: int) -> int:
    return (n - 1) // 3


def _numbers(value: str, count: int):
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != count or len(set(parts)) != count:
        return None
    if not all(p.isdigit() and 1 <= int(p) <= 36 and str(int(p)) == p for p in parts):
        return None
    return sorted(int(p) for p in parts)


def _valid_split(value: str) -> bool:
    if sorted(p.strip() for p in value.split(",")) == ["0", "00"]:
        return True
    nums = _numbers(value, 2)
    if not nums:
        return False
    a, b = nums
    return b - a == 3 or (b - a == 1 and _row(a) == _row(b))


def _valid_street(nums) -> bool:
    return bool(nums) and nums[0] % 3 == 1 and nums == [nums[0], nums[0] + 1, nums[0] + 2]


def _valid_corner(nums) -> bool:
    if not nums:
        return False
    a = nums[0]
    return a % 3 != 0 and nums == [a, a + 1, a + 3, a + 4]


def _valid_line(nums) -> bool:
    if not nums:
        return False
    a = nums[0]
    return a % 3 == 1 and a <= 31 and nums == list(range(a, a + 6))


def parse_bet(bet_type: str):
    """Split a bet key into ``(kind, pockets)``; ``ValidationError`` if it is not on the layout."""
    kind, _, value = str(bet_type).partition("-")
    if kind not in RETURNS:
        raise ValidationError(f"unknown roulette bet {bet_type!r}")

    if kind == "straight":
        if value not in POCKETS:
            raise ValidationError(f"no pocket {value!r}")
        return kind, {value}
    if kind == "split":
        if not _valid_split(value):
            raise ValidationError(f"split {value!r} is not two adjacent numbers")
        return kind, {p.strip() for p in value.split(",")}
    if kind in ("street", "corner", "line"):
        size, check = {"street": (3, _valid_street), "corner": (4, _valid_corner), "line": (6, _valid_line)}[kind]
        nums = _numbers(value, size)
        if not check(nums):
            raise ValidationError(f"{kind} {value!r} is not on the layout")
        return kind, {str(n) for n in nums}
    if kind == "dozen":
        if value not in DOZENS:
            raise ValidationError(f"dozen must be one of {list(DOZENS)}")
        lo, hi = DOZENS[value]
        return kind, {str(n) for n in range(lo, hi + 1)}
    if kind == "column":
        if value not in ("1", "2", "3"):
            raise ValidationError("column must be 1, 2 or 3")
        c = int(value)
        return kind, {str(n) for n in range(1, 37) if (n - c) % 3 == 0}

    if value:
        raise ValidationError(f"{kind} takes no value")
    nums = range(1, 37)
    covered = {
        "red": [n for n in nums if n in RED_NUMBERS],
        "black": [n for n in nums if n not in RED_NUMBERS],
        "even": [n for n in nums if n % 2 == 0],
        "odd": [n for n in nums if n % 2 == 1],
        "low": [n for n in nums if n <= 18],
        "high": [n for n in nums if n >= 19],
    }[kind]
    return kind, {str(n) for n in covered}


class RouletteRules(GameRules):
    kind = GameKind.wheel
    name = "roulette"

    def parse_outcome(self, raw) -> RouletteOutcome:
        if isinstance(raw, RouletteOutcome):
            raw = raw.number
        if isinstance(raw, dict):
            raw = raw.get("number")
        if isinstance(raw, bool):
            raise ValidationError("bad roulette number")
        if isinstance(raw, int):
            # 整數 0 只代表單零；00 必須用字串
            raw = str(raw)
        if not isinstance(raw, str):
            raise ValidationError(f"bad roulette number {raw!r}")
        try:
            outcome = RouletteOutcome(number=raw.strip())
        except pydantic.ValidationError as e:
            raise ValidationError(f"no pocket {raw!r}") from e
        outcome.color = color_of(outcome.number)
        return outcome

    def rule_for(self, bet_type: str):
        kind, covered = parse_bet(bet_type)
        multiplier = RETURNS[kind]
        return lambda o, t: decide(o.number in covered, multiplier)

    def history_token(self, outcome: RouletteOutcome) -> str:
        return outcome.number

    def describe(self, outcome: RouletteOutcome) -> str:
        return f"{outcome.number} {outcome.color}"

    def draw_outcome(self, table=None) -> RouletteOutcome:
        return self.parse_outcome(random.choice(POCKETS))


RULES = RouletteRules()
