# baccarat/schema.py
from typing import List

from pydantic import BaseModel, Field


class BaccaratOutcome(BaseModel):
    player_cards: List[str] = Field(..., min_length=2, max_length=3)
    banker_cards: List[str] = Field(..., min_length=2, max_length=3)


class HandSummary(BaseModel):
    player_total: int
    banker_total: int
    winner: str       # 'player'|'banker'|'tie'
    natural: bool
