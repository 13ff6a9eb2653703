# roulette/schema.py
from pydantic import BaseModel, Field


class RouletteOutcome(BaseModel):
    number: str = Field(..., pattern=r"^(00|0|[1-9]|[12][0-9]|3[0-6])$")
    color: str = "green"
