import pytest

from roulette.logic import RULES, color_of, parse_bet
from session.rules import LOSE, WIN
from util.errors import ValidationError
from util.money import apply_multiplier


def verdict(bet, number):
    return RULES.evaluate(bet, RULES.parse_outcome(number), {})


def test_outcome_parsing():
    assert RULES.parse_outcome(17).number == "17"
    assert RULES.parse_outcome("00").number == "00"
    assert RULES.parse_outcome(0).number == "0"
    assert RULES.parse_outcome({"number": "32"}).color == "red"
    assert RULES.parse_outcome(" 8 ").color == "black"


@pytest.mark.parametrize("raw", [37, -1, "37", "000", "07", "red", None, 3.0, True, [1]])
def test_out_of_domain_outcomes_are_rejected(raw):
    with pytest.raises(ValidationError):
        RULES.parse_outcome(raw)


def test_colors():
    assert color_of("0") == color_of("00") == "green"
    assert color_of("1") == "red"
    assert color_of("2") == "black"


@pytest.mark.parametrize("bet", [
    "straight-00", "straight-36", "split-0,00", "split-1,2", "split-2,5", "split-33,36",
    "street-34,35,36", "corner-1,2,4,5", "corner-32,33,35,36", "line-1,2,3,4,5,6",
    "line-31,32,33,34,35,36", "dozen-3rd", "column-2", "red", "high",
])
def test_layout_bets(bet):
    RULES.check_bet(bet, {})


@pytest.mark.parametrize("bet", [
    "straight-37", "split-3,4", "split-1,3", "split-1,1", "split-0,1", "street-2,3,4",
    "corner-3,4,6,7", "corner-1,2,3,4", "line-2,3,4,5,6,7", "line-34,35,36,37,38,39",
    "dozen-4th", "column-0", "red-1", "bogus", "split-01,02",
])
def test_off_layout_bets_are_rejected(bet):
    with pytest.raises(ValidationError):
        RULES.check_bet(bet, {})


def test_split_covers_both_numbers():
    assert parse_bet("split-14,17") == ("split", {"14", "17"})


@pytest.mark.parametrize("bet, number, multiplier", [
    ("straight-17", 17, 36),
    ("straight-00", "00", 36),
    ("split-0,00", 0, 18),
    ("street-7,8,9", 9, 12),
    ("corner-1,2,4,5", 5, 9),
    ("line-1,2,3,4,5,6", 6, 6),
    ("dozen-2nd", 13, 3),
    ("column-1", 34, 3),
    ("red", 1, 2),
    ("black", 2, 2),
    ("even", 36, 2),
    ("odd", 35, 2),
    ("low", 18, 2),
    ("high", 19, 2),
])
def test_winning_bets(bet, number, multiplier):
    v = verdict(bet, number)
    assert v.decision == WIN
    assert v.multiplier == multiplier


@pytest.mark.parametrize("bet", ["red", "black", "even", "odd", "low", "high", "column-1", "dozen-1st"])
@pytest.mark.parametrize("zero", ["0", "00"])
def test_zeros_lose_outside_bets(bet, zero):
    assert verdict(bet, zero).decision == LOSE


def test_grouped_bet_miss():
    # 20 on a corner that does not hold the number returns nothing
    v = verdict("corner-1,2,4,5", 3)
    assert v.decision == LOSE


def test_even_money_example():
    v = verdict("red", 3)
    assert apply_multiplier(50, v.multiplier) == 100


def test_history_token_and_draw():
    o = RULES.draw_outcome()
    assert RULES.history_token(o) == o.number
    assert RULES.describe(RULES.parse_outcome("00")) == "00 green"
