# util/store.py
"""Path-addressed shared store.

The session layer only ever talks to a ``SharedStore``: per-path ``get``,
``set``, ``update``, ``push`` and ``subscribe``. Paths are slash separated
(``session/users/u1``); reading a parent path returns the nested mapping of
everything below it, the way a realtime database does. Writing ``None`` (or
an empty mapping) deletes a path.

Writes to the same path are last-write-wins in arrival order. Nothing is
promised about the order in which subscribers of *different* paths hear
about changes.
"""
from __future__ import annotations

import copy
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from util.errors import StoreUnavailable, ValidationError

log = logging.getLogger("casino.store")

Callback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


def split_path(path: str) -> List[str]:
    parts = [p for p in str(path or "").strip("/").split("/") if p]
    if not parts:
        raise ValidationError("empty store path")
    return parts


def join_path(*parts: str) -> str:
    return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))


def related(a: str, b: str) -> bool:
    """True when one path is the other, an ancestor, or a descendant."""
    pa, pb = split_path(a), split_path(b)
    n = min(len(pa), len(pb))
    return pa[:n] == pb[:n]


class SharedStore(ABC):
    @abstractmethod
    def get(self, path: str) -> Any:
        ...

    @abstractmethod
    def set(self, path: str, value: Any) -> None:
        ...

    @abstractmethod
    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        ...

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        """Shallow merge: every key of ``changes`` is written as a child path."""
        for key, value in changes.items():
            self.set(join_path(path, key), value)

    def push(self, path: str, value: Any) -> str:
        key = new_push_key()
        self.set(join_path(path, key), value)
        return key

    def get_or(self, path: str, default: Any) -> Any:
        value = self.get(path)
        return default if value is None else value


_push_counter = itertools.count()
_push_lock = threading.Lock()


def new_push_key() -> str:
    # 時間排序的 key：毫秒 + 流水號
    with _push_lock:
        seq = next(_push_counter) % 1_000_000
    return f"{int(time.time() * 1000):013d}{seq:06d}"


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            v = _prune(v)
            if v is not None:
                out[str(k)] = v
        return out or None
    return value


class InMemoryStore(SharedStore):
    """Process-local store used by tests and single-process deployments.

    ``deferred=True`` queues change notifications until ``deliver()`` is
    called, which lets tests interleave writes from several clients and
    observe stale reads deterministically. ``fail_writes``/``fail_reads``
    inject ``StoreUnavailable`` for the next N operations.
    """

    def __init__(self, deferred: bool = False):
        self._root: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._subs: Dict[int, Tuple[str, Callback]] = {}
        self._sub_ids = itertools.count(1)
        self._queue: List[Tuple[int, Any]] = []
        self.deferred = deferred
        self._fail_writes = 0
        self._fail_reads = 0
        self._pass_writes = 0
        self.writes: List[str] = []

    # ---- fault injection ----
    def fail_writes(self, count: int = 1, after: int = 0) -> None:
        self._fail_writes = count
        self._pass_writes = after

    def fail_reads(self, count: int = 1) -> None:
        self._fail_reads = count

    def _check(self, kind: str) -> None:
        if kind == "write" and self._pass_writes > 0:
            self._pass_writes -= 1
            return
        if kind == "write" and self._fail_writes > 0:
            self._fail_writes -= 1
            raise StoreUnavailable("store write failed")
        if kind == "read" and self._fail_reads > 0:
            self._fail_reads -= 1
            raise StoreUnavailable("store read failed")

    # ---- tree helpers ----
    def _read(self, parts: List[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _write(self, parts: List[str], value: Any) -> None:
        value = _prune(copy.deepcopy(value))
        trail = [self._root]
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child
            trail.append(node)
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value
        # drop parents left empty by a delete
        for depth in range(len(parts) - 1, 0, -1):
            parent = trail[depth - 1]
            if trail[depth] == {}:
                parent.pop(parts[depth - 1], None)
            else:
                break

    # ---- SharedStore ----
    def get(self, path: str) -> Any:
        parts = split_path(path)
        with self._lock:
            self._check("read")
            return self._read(parts)

    def _apply(self, path: str, value: Any) -> List[int]:
        parts = split_path(path)
        self._write(parts, value)
        self.writes.append("/".join(parts))
        return [sid for sid, (sub_path, _cb) in self._subs.items() if related(sub_path, path)]

    def _notify(self, sids: List[int]) -> None:
        for sid in sorted(set(sids)):
            self._queue.append((sid, self._read(split_path(self._subs[sid][0]))))

    def set(self, path: str, value: Any) -> None:
        split_path(path)
        with self._lock:
            self._check("write")
            self._notify(self._apply(path, value))
        if not self.deferred:
            self.deliver()

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        # all children land before anyone is notified
        with self._lock:
            self._check("write")
            sids: List[int] = []
            for key, value in changes.items():
                sids += self._apply(join_path(path, key), value)
            self._notify(sids)
        if not self.deferred:
            self.deliver()

    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        split_path(path)
        with self._lock:
            sid = next(self._sub_ids)
            self._subs[sid] = (path, callback)
            self._queue.append((sid, self._read(split_path(path))))
        if not self.deferred:
            self.deliver()

        def unsubscribe() -> None:
            with self._lock:
                self._subs.pop(sid, None)

        return unsubscribe

    # ---- delivery ----
    @property
    def pending_notifications(self) -> int:
        with self._lock:
            return len(self._queue)

    def deliver(self, limit: Optional[int] = None) -> int:
        """Hand queued notifications to subscribers, oldest first."""
        delivered = 0
        while limit is None or delivered < limit:
            with self._lock:
                if not self._queue:
                    break
                sid, value = self._queue.pop(0)
                sub = self._subs.get(sid)
            if sub is None:
                continue
            try:
                sub[1](value)
            except Exception:
                log.exception("subscriber for %s failed", sub[0])
            delivered += 1
        return delivered
