# util/money.py
"""Payout arithmetic.

Every amount is an integer number of chips. Fractional returns (commission
bets, place bets) are rounded half-up per bet, so the order in which bets
are evaluated never changes the result.
"""

from decimal import Decimal, ROUND_HALF_UP
from fractions import Fraction

UNIT = Decimal(1)


def to_fraction(value) -> Fraction:
    if isinstance(value, Fraction):
        return value
    # str() keeps 1.95 as 39/20 instead of the binary float
    return Fraction(str(value))


def round_half_up(value: Fraction) -> int:
    exact = Decimal(value.numerator) / Decimal(value.denominator)
    return int(exact.quantize(UNIT, rounding=ROUND_HALF_UP))


def apply_multiplier(stake: int, multiplier) -> int:
    return round_half_up(stake * to_fraction(multiplier))


def is_chip_amount(amount, unit: int = 1) -> bool:
    if isinstance(amount, bool) or not isinstance(amount, int):
        return False
    return amount > 0 and amount % unit == 0
