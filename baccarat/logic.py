# baccarat/logic.py
import random
from fractions import Fraction

import pydantic

from session.rules import GameRules, decide
from session.schema import GameKind
from util.errors import ValidationError
from .schema import BaccaratOutcome, HandSummary

SUITS = ["S", "H", "D", "C"]  # ♠ ♥ ♦ ♣ (用字母存)
SUIT_ALIASES = {"♠": "S", "♥": "H", "♦": "D", "♣": "C"}
RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]

BANKER_RETURN = Fraction(39, 20)  # 1:1 扣 5% 佣金


def fresh_shoe(decks: int = 1):
    deck = [f"{r}{s}" for _ in range(decks) for s in SUITS for r in RANKS]
    random.shuffle(deck)
    return deck


def normalize_card(card) -> str:
    text = str(card or "").strip().upper()
    if len(text) < 2:
        raise ValidationError(f"bad card {card!r}")
    rank, suit = text[:-1], SUIT_ALIASES.get(text[-1], text[-1])
    if rank == "1":
        rank = "A"
    if rank not in RANKS or suit not in SUITS:
        raise ValidationError(f"bad card {card!r}")
    return f"{rank}{suit}"


def card_value(rank: str) -> int:
    if rank in ("J", "Q", "K", "10"):
        return 0
    if rank == "A":
        return 1
    return int(rank)


def card_rank(card: str) -> str:
    return card[:-1]


def hand_total(cards) -> int:
    total = sum(card_value(card_rank(c)) for c in cards)  # c[:-1] 去掉花色字母
    return total % 10


def is_pair(cards) -> bool:
    return len(cards) >= 2 and card_rank(cards[0]) == card_rank(cards[1])


def banker_draws(bt: int, player_third) -> bool:
    if player_third is None:
        # Player 未補牌，Banker<=5 補
        return bt <= 5
    v = card_value(card_rank(player_third))
    if bt <= 2:
        return True
    if bt == 3:
        return v != 8
    if bt == 4:
        return 2 <= v <= 7
    if bt == 5:
        return 4 <= v <= 7
    if bt == 6:
        return v in (6, 7)
    return False  # bt == 7 停


def deal_round(shoe=None) -> BaccaratOutcome:
    """依百家樂規則發牌 & 補牌。"""
    deck = list(shoe) if shoe is not None else fresh_shoe()

    # 起手各兩張（P1 B1 P2 B2）
    p, b = [deck.pop(0)], [deck.pop(0)]
    p.append(deck.pop(0))
    b.append(deck.pop(0))
    pt = hand_total(p)
    bt = hand_total(b)

    # Natural 8/9 -> 直接結束
    if pt in (8, 9) or bt in (8, 9):
        return BaccaratOutcome(player_cards=p, banker_cards=b)

    player_third = None
    if pt <= 5:
        player_third = deck.pop(0)
        p.append(player_third)

    if banker_draws(bt, player_third):
        b.append(deck.pop(0))

    return BaccaratOutcome(player_cards=p, banker_cards=b)


def follows_tableau(outcome: BaccaratOutcome) -> bool:
    p, b = outcome.player_cards, outcome.banker_cards
    pt, bt = hand_total(p[:2]), hand_total(b[:2])
    if pt in (8, 9) or bt in (8, 9):
        return len(p) == 2 and len(b) == 2
    if (len(p) == 3) != (pt <= 5):
        return False
    player_third = p[2] if len(p) == 3 else None
    return (len(b) == 3) == banker_draws(bt, player_third)


def summarize(outcome: BaccaratOutcome) -> HandSummary:
    pt = hand_total(outcome.player_cards)
    bt = hand_total(outcome.banker_cards)
    if pt > bt:
        winner = "player"
    elif bt > pt:
        winner = "banker"
    else:
        winner = "tie"
    natural = len(outcome.player_cards) == 2 and len(outcome.banker_cards) == 2
    return HandSummary(player_total=pt, banker_total=bt, winner=winner, natural=natural)


# ---- bet table ----
def _side(side, multiplier):
    return lambda o, t: decide(summarize(o).winner == side, multiplier)


def _pair(attr):
    return lambda o, t: decide(is_pair(getattr(o, attr)), 12)


def _dragon(o, t):
    # Natural 9 贏 4 點以上
    s = summarize(o)
    margin = abs(s.player_total - s.banker_total)
    return decide(s.natural and max(s.player_total, s.banker_total) == 9 and margin >= 4, 31)


def _panda(o, t):
    # Natural 8，非和局
    s = summarize(o)
    hit = s.natural and 8 in (s.player_total, s.banker_total) and s.winner != "tie"
    return decide(hit, 26)


BET_TABLE = {
    "player": _side("player", 2),
    "banker": _side("banker", BANKER_RETURN),
    "tie": _side("tie", 9),
    "playerPair": _pair("player_cards"),
    "bankerPair": _pair("banker_cards"),
    "dragon": _dragon,
    "panda": _panda,
}


class BaccaratRules(GameRules):
    kind = GameKind.cards
    name = "baccarat"

    def __init__(self, strict_tableau: bool = False):
        self.strict_tableau = strict_tableau

    def parse_outcome(self, raw) -> BaccaratOutcome:
        if isinstance(raw, BaccaratOutcome):
            raw = raw.model_dump()
        try:
            outcome = BaccaratOutcome.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ValidationError(f"bad baccarat outcome: {e.errors()[0]['msg']}") from e
        outcome = BaccaratOutcome(
            player_cards=[normalize_card(c) for c in outcome.player_cards],
            banker_cards=[normalize_card(c) for c in outcome.banker_cards],
        )
        if self.strict_tableau and not follows_tableau(outcome):
            raise ValidationError("hand does not follow the third-card rule")
        return outcome

    def rule_for(self, bet_type: str):
        try:
            return BET_TABLE[bet_type]
        except KeyError:
            raise ValidationError(f"unknown baccarat bet {bet_type!r}") from None

    def history_token(self, outcome: BaccaratOutcome) -> str:
        return {"player": "P", "banker": "B", "tie": "T"}[summarize(outcome).winner]

    def describe(self, outcome: BaccaratOutcome) -> str:
        s = summarize(outcome)
        return f"{s.winner.title()} wins, P:{s.player_total} B:{s.banker_total}"

    def draw_outcome(self, table=None) -> BaccaratOutcome:
        return deal_round()


RULES = BaccaratRules()
