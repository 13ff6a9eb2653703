# session/subscriptions.py
"""Two ways of following a store path, picked per field category.

Time-critical fields (``activeGame`` and ``games/{kind}/state``, which
carry the phase and the countdown) use the store's push notifications:
they are stale by at most the store's propagation delay.

Aggregates (leaderboard, chat, presence, settings, end-of-session) are
polled every ``POLL_INTERVAL_SECONDS`` (2 s): they are stale by at most
one interval plus one read. A failed poll is logged and the next tick
tries again.
"""
import logging
import threading
from typing import Any, Callable, Optional

from util import config
from util.errors import StoreUnavailable
from util.store import SharedStore, split_path

log = logging.getLogger("casino.subscriptions")

PUSH = "push"
POLL = "poll"

_PUSH_ROOTS = ("activeGame", "games")


def category_of(path: str) -> str:
    return PUSH if split_path(path)[0] in _PUSH_ROOTS else POLL


class PushSubscription:
    strategy = PUSH

    def __init__(self, store: SharedStore, path: str, callback: Callable[[Any], None]):
        self.store = store
        self.path = path
        self.callback = callback
        self._unsubscribe = None

    def start(self) -> "PushSubscription":
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.path, self.callback)
        return self

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class PollingSubscription:
    strategy = POLL

    def __init__(self, store: SharedStore, path: str, callback: Callable[[Any], None],
                 interval: float = None):
        self.store = store
        self.path = path
        self.callback = callback
        self.interval = interval or config.POLL_INTERVAL_SECONDS
        self.failures = 0
        self._last: Any = None
        self._seen = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> bool:
        """Read once; call back when the value changed. False when the read failed."""
        try:
            value = self.store.get(self.path)
        except StoreUnavailable as e:
            self.failures += 1
            log.warning("poll of %s failed (%d in a row): %s", self.path, self.failures, e)
            return False
        self.failures = 0
        if not self._seen or value != self._last:
            self._seen = True
            self._last = value
            self.callback(value)
        return True

    def _run(self) -> None:
        self.poll_once()
        while not self._stop.wait(self.interval):
            self.poll_once()

    def start(self) -> "PollingSubscription":
        if self._thread is None:
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=f"poll-{self.path}", daemon=True)
            self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread = None


def watch(store: SharedStore, path: str, callback: Callable[[Any], None],
          interval: float = None, start: bool = True):
    """Follow ``path`` with the strategy its category calls for."""
    if category_of(path) == PUSH:
        sub = PushSubscription(store, path, callback)
    else:
        sub = PollingSubscription(store, path, callback, interval)
    return sub.start() if start else sub
