# util/clock.py
import time
from datetime import datetime

import pytz

from util import config

TZ = pytz.timezone(config.CASINO_TZ)


def now_ms() -> int:
    return int(time.time() * 1000)


def local_now() -> datetime:
    return datetime.now(TZ)


def local_iso(ms: int) -> str:
    """Render a store timestamp (epoch ms) in the casino's timezone."""
    return datetime.fromtimestamp(ms / 1000.0, TZ).isoformat()
