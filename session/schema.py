# session/schema.py
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from util import config


class GameKind(str, Enum):
    wheel = "wheel"     # roulette
    dice = "dice"       # craps
    cards = "cards"     # baccarat


class Phase(str, Enum):
    betting = "betting"
    locked = "locked"
    resolved = "resolved"


class Role(str, Enum):
    player = "player"
    dealer = "dealer"


class SessionStats(BaseModel):
    total_wagered: int = 0
    biggest_win: int = 0
    rounds_played: int = 0
    starting_bankroll: int = config.DEFAULT_STARTING_BANKROLL


class BetHistoryItem(BaseModel):
    game_kind: GameKind
    round_number: int
    result: str
    wagered: int
    returned: int
    net: int
    timestamp: int


class Participant(BaseModel):
    id: str
    name: str
    bankroll: int
    role: Role = Role.player
    last_active_at: int = 0
    stats: SessionStats = Field(default_factory=SessionStats)
    bet_history: List[BetHistoryItem] = Field(default_factory=list)
    # settlement ids already credited, newest last
    applied_settlements: List[str] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    id: str
    name: str
    bankroll: int
    timestamp: int = 0


class OwedSettlement(BaseModel):
    """A round's return recorded on the ledger, waiting to reach the bankroll."""
    game_kind: GameKind
    round_number: int
    returned: int = 0
    history: Optional[BetHistoryItem] = None


class Carryover(BaseModel):
    """Settlement of a participant whose ledger write failed; replayed next resolve."""
    cleared: Dict[str, int] = Field(default_factory=dict)
    owed: Dict[str, OwedSettlement] = Field(default_factory=dict)


class GameRound(BaseModel):
    game_kind: GameKind
    activation_id: str
    round_number: int = 0
    phase: Phase = Phase.betting
    betting_window: int = config.BETTING_WINDOW_SECONDS
    betting_window_remaining: int = config.BETTING_WINDOW_SECONDS
    outcome: Optional[Dict[str, Any]] = None
    result_history: List[str] = Field(default_factory=list)
    table: Dict[str, Any] = Field(default_factory=dict)
    bet_totals: Dict[str, int] = Field(default_factory=dict)
    carryover: Dict[str, Carryover] = Field(default_factory=dict)
    updated_at: int = 0


class LedgerEntry(BaseModel):
    participant_id: str
    activation_id: Optional[str] = None
    pending: Dict[str, int] = Field(default_factory=dict)
    active: Dict[str, int] = Field(default_factory=dict)
    committed_round: Optional[int] = None
    last_committed: Dict[str, int] = Field(default_factory=dict)
    owed: Dict[str, OwedSettlement] = Field(default_factory=dict)

    def pending_total(self) -> int:
        return sum(self.pending.values())

    def active_total(self) -> int:
        return sum(self.active.values())


class ActiveGame(BaseModel):
    game_kind: GameKind
    activated_at: int


class EndOfSession(BaseModel):
    active: bool = True
    players: List[LeaderboardEntry] = Field(default_factory=list)
    starting_bankroll: int
    timestamp: int


class ChatMessage(BaseModel):
    id: str = ""
    participant_id: str
    name: str
    text: str
    timestamp: int


class Presence(BaseModel):
    name: str
    last_seen: int


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")
