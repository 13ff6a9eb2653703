# craps/schema.py
from typing import Optional

from pydantic import BaseModel, Field

STANDARD = "standard"
CRAPLESS = "crapless"


class CrapsOutcome(BaseModel):
    dice1: int = Field(..., ge=1, le=6, strict=True)
    dice2: int = Field(..., ge=1, le=6, strict=True)

    @property
    def total(self) -> int:
        return self.dice1 + self.dice2

    @property
    def hard(self) -> bool:
        return self.dice1 == self.dice2


class CrapsTable(BaseModel):
    mode: str = Field(STANDARD, pattern=r"^(standard|crapless)$")
    point: Optional[int] = None
