# craps/logic.py
"""Craps bet table.

Table state ``{mode, point}`` belongs to the dealer: the payout engine reads
the point from the round, never from a player's own bets. Multi-roll bets
answer ``still_open()`` until their number or a seven decides them.
"""
import random
from fractions import Fraction

import pydantic

from session.rules import GameRules, decide, lose, push, still_open, win, win_and_keep
from session.schema import GameKind
from util.errors import ValidationError
from .schema import CRAPLESS, STANDARD, CrapsOutcome, CrapsTable

BOX_NUMBERS = (4, 5, 6, 8, 9, 10)
HARDWAYS = {4: 8, 6: 10, 8: 10, 10: 8}
CRAPS = (2, 3, 12)
VIG = Fraction(19, 20)  # buy/lay 抽 5%

PLACE_PROFIT = {4: Fraction(9, 5), 10: Fraction(9, 5), 5: Fraction(7, 5), 9: Fraction(7, 5),
                6: Fraction(7, 6), 8: Fraction(7, 6)}
TRUE_ODDS = {4: Fraction(2), 10: Fraction(2), 5: Fraction(3, 2), 9: Fraction(3, 2),
             6: Fraction(6, 5), 8: Fraction(6, 5),
             # crapless only
             2: Fraction(6), 12: Fraction(6), 3: Fraction(3), 11: Fraction(3)}
LAY_ODDS = {4: Fraction(1, 2), 10: Fraction(1, 2), 5: Fraction(2, 3), 9: Fraction(2, 3),
            6: Fraction(5, 6), 8: Fraction(5, 6)}
CRAPLESS_PLACE_PROFIT = {2: Fraction(7), 12: Fraction(7), 3: Fraction(3), 11: Fraction(3)}
CRAPLESS_LINE_RETURN = {2: Fraction(7), 12: Fraction(7), 3: Fraction(4), 11: Fraction(4)}

# 需要 point 才能下的注
NEEDS_POINT = {"passOdds", "dontPassOdds"}
STANDARD_ONLY = {"dontPass", "dontPassOdds"}


def point_of(table) -> int:
    return (table or {}).get("point")


def mode_of(table) -> str:
    return (table or {}).get("mode") or STANDARD


# ---- one-roll ----
def _field(o, t):
    if o.total in (2, 12):
        return win(3)
    return decide(o.total in (3, 4, 9, 10, 11), 2)


def _horn(o, t):
    if o.total in (2, 12):
        return win(Fraction(15, 2))
    return decide(o.total in (3, 11), 4)


def _ce(o, t):
    if o.total in CRAPS:
        return win(Fraction(3, 2))
    return decide(o.total == 11, Fraction(7, 2))


def _hop(a, b):
    pair = (a, b)
    multiplier = 31 if a == b else 16
    return lambda o, t: decide(tuple(sorted((o.dice1, o.dice2))) == pair, multiplier)


# ---- multi-roll ----
def _hardway(n):
    def rule(o, t):
        if o.total == n:
            return win(HARDWAYS[n]) if o.hard else lose()
        if o.total == 7:
            return lose()
        return still_open()
    return rule


def _number_until_seven(n, profit):
    # place / buy / big 6-8：中了只付彩金，本金繼續留在桌上
    def rule(o, t):
        if o.total == n:
            return win_and_keep(profit)
        if o.total == 7:
            return lose()
        return still_open()
    return rule


def _lay(n):
    def rule(o, t):
        if o.total == 7:
            return win(1 + LAY_ODDS[n] * VIG)
        if o.total == n:
            return lose()
        return still_open()
    return rule


# ---- line ----
def _pass_line(o, t):
    point, mode = point_of(t), mode_of(t)
    if point is None:
        if o.total in (7, 11):
            return win(2)
        if mode == STANDARD and o.total in CRAPS:
            return lose()
        return still_open()
    if o.total == point:
        if mode == CRAPLESS:
            return win(CRAPLESS_LINE_RETURN.get(point, 2))
        return win(2)
    if o.total == 7:
        return lose()
    return still_open()


def _dont_pass(o, t):
    point = point_of(t)
    if point is None:
        if o.total in (2, 3):
            return win(2)
        if o.total == 12:
            return push()
        if o.total in (7, 11):
            return lose()
        return still_open()
    if o.total == 7:
        return win(2)
    if o.total == point:
        return lose()
    return still_open()


def _pass_odds(o, t):
    point = point_of(t)
    if point is None:
        return push()
    if o.total == point:
        return win(1 + TRUE_ODDS[point])
    if o.total == 7:
        return lose()
    return still_open()


def _dont_pass_odds(o, t):
    point = point_of(t)
    if point is None:
        return push()
    if o.total == 7:
        return win(1 + LAY_ODDS[point])
    if o.total == point:
        return lose()
    return still_open()


def _build_table():
    table = {
        "field": _field,
        "any7": lambda o, t: decide(o.total == 7, 5),
        "anyCraps": lambda o, t: decide(o.total in CRAPS, 8),
        "ace2": lambda o, t: decide(o.total == 2, 31),
        "ace12": lambda o, t: decide(o.total == 12, 31),
        "three": lambda o, t: decide(o.total == 3, 16),
        "yo11": lambda o, t: decide(o.total == 11, 16),
        "horn": _horn,
        "ce": _ce,
        "big6": _number_until_seven(6, Fraction(1)),
        "big8": _number_until_seven(8, Fraction(1)),
        "passLine": _pass_line,
        "dontPass": _dont_pass,
        "passOdds": _pass_odds,
        "dontPassOdds": _dont_pass_odds,
    }
    for a in range(1, 7):
        for b in range(a, 7):
            table[f"hop{a}{b}"] = _hop(a, b)
    for n in HARDWAYS:
        table[f"hard{n}"] = _hardway(n)
    for n in BOX_NUMBERS:
        table[f"place{n}"] = _number_until_seven(n, PLACE_PROFIT[n])
        table[f"buy{n}"] = _number_until_seven(n, TRUE_ODDS[n] * VIG)
        table[f"lay{n}"] = _lay(n)
    for n, profit in CRAPLESS_PLACE_PROFIT.items():
        table[f"craplessPlace{n}"] = _number_until_seven(n, profit)
    return table


BET_TABLE = _build_table()
CRAPLESS_ONLY = {k for k in BET_TABLE if k.startswith("craplessPlace")}


class CrapsRules(GameRules):
    kind = GameKind.dice
    name = "craps"

    def initial_table(self, mode=None):
        try:
            return CrapsTable(mode=mode or STANDARD).model_dump()
        except pydantic.ValidationError as e:
            raise ValidationError(f"craps mode must be {STANDARD} or {CRAPLESS}") from e

    def parse_outcome(self, raw) -> CrapsOutcome:
        if isinstance(raw, CrapsOutcome):
            return raw
        if isinstance(raw, (list, tuple)) and len(raw) == 2:
            raw = {"dice1": raw[0], "dice2": raw[1]}
        try:
            return CrapsOutcome.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ValidationError(f"bad dice {raw!r}") from e

    def rule_for(self, bet_type: str):
        try:
            return BET_TABLE[bet_type]
        except KeyError:
            raise ValidationError(f"unknown craps bet {bet_type!r}") from None

    def check_bet(self, bet_type: str, table) -> None:
        self.rule_for(bet_type)
        mode = mode_of(table)
        if bet_type in NEEDS_POINT and point_of(table) is None:
            raise ValidationError(f"{bet_type} needs a point")
        if bet_type in CRAPLESS_ONLY and mode != CRAPLESS:
            raise ValidationError(f"{bet_type} is only offered in crapless mode")
        if bet_type in STANDARD_ONLY and mode != STANDARD:
            raise ValidationError(f"{bet_type} is not offered in crapless mode")

    def advance_table(self, table, outcome: CrapsOutcome):
        table = dict(table or {})
        table.setdefault("mode", STANDARD)
        point = table.get("point")
        if point is None:
            if table["mode"] == CRAPLESS:
                opens = outcome.total not in (7, 11)
            else:
                opens = outcome.total in BOX_NUMBERS
            if opens:
                table["point"] = outcome.total
        elif outcome.total in (point, 7):
            table["point"] = None
        return table

    def history_token(self, outcome: CrapsOutcome) -> str:
        return str(outcome.total)

    def describe(self, outcome: CrapsOutcome) -> str:
        text = f"{outcome.dice1}+{outcome.dice2}={outcome.total}"
        return text + (" (hard)" if outcome.hard and outcome.total in HARDWAYS else "")

    def draw_outcome(self, table=None) -> CrapsOutcome:
        return CrapsOutcome(dice1=random.randint(1, 6), dice2=random.randint(1, 6))


RULES = CrapsRules()
