# util/config.py
import os
import json


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return float(raw)


def _list(name: str, default: list) -> list:
    # JSON array or comma separated
    raw = os.getenv(name)
    if raw in (None, ""):
        return list(default)
    raw = raw.strip()
    if raw.startswith("["):
        return json.loads(raw)
    return [x.strip() for x in raw.split(",") if x.strip()]


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


APP_NAME = "Casino Session"

DATABASE_URL = os.getenv("DATABASE_URL")

# 荷官密碼：只是介面上的門檻，不是安全邊界
DEALER_SECRET = os.getenv("DEALER_SECRET", "dealer2024")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
TOKEN_TTL_SECONDS = _int("TOKEN_TTL_SECONDS", 12 * 60 * 60)

BETTING_WINDOW_SECONDS = _int("BETTING_WINDOW_SECONDS", 15)
DEFAULT_STARTING_BANKROLL = _int("DEFAULT_STARTING_BANKROLL", 1000)
STARTING_BANKROLL_PRESETS = [int(x) for x in _list("STARTING_BANKROLL_PRESETS", [500, 1000, 2500, 5000, 10000])]
MIN_BET_UNIT = _int("MIN_BET_UNIT", 1)

LEADERBOARD_SIZE = _int("LEADERBOARD_SIZE", 10)
HISTORY_CAPACITY = _int("HISTORY_CAPACITY", 50)
CHAT_CAPACITY = _int("CHAT_CAPACITY", 50)
BET_HISTORY_SIZE = _int("BET_HISTORY_SIZE", 20)

POLL_INTERVAL_SECONDS = _float("POLL_INTERVAL_SECONDS", 2.0)
PRESENCE_HEARTBEAT_SECONDS = _float("PRESENCE_HEARTBEAT_SECONDS", 10.0)
PRESENCE_TIMEOUT_SECONDS = _float("PRESENCE_TIMEOUT_SECONDS", 30.0)

ALLOWED_ORIGINS = _list("ALLOWED_ORIGINS", ["*"])
CASINO_TZ = os.getenv("CASINO_TZ", "Asia/Taipei")

LOG_PATH = os.getenv("LOG_PATH", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

RUN_COUNTDOWN = _bool("RUN_COUNTDOWN", True)
