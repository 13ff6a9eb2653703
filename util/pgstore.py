# util/pgstore.py
"""SharedStore on PostgreSQL.

Every leaf value lives in its own row of ``store_nodes`` keyed by its full
path; mappings are flattened on write and reassembled on read. Each write
transaction ends with ``pg_notify('store_changes', path)`` and a listener
thread fans notifications out to local subscribers, which re-read their
path. That keeps the same-path last-write-wins contract (row upserts) and
gives no ordering across paths.
"""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Dict, List, Tuple

import psycopg
from psycopg.types.json import Jsonb

from util.db import db
from util.errors import StoreUnavailable
from util.store import Callback, SharedStore, Unsubscribe, join_path, related, split_path

log = logging.getLogger("casino.pgstore")

CHANNEL = "store_changes"


def flatten(path: str, value: Any) -> List[Tuple[str, Any]]:
    if isinstance(value, dict):
        rows: List[Tuple[str, Any]] = []
        for key, child in value.items():
            rows.extend(flatten(join_path(path, str(key)), child))
        return rows
    if value is None:
        return []
    return [(path, value)]


def assemble(base: str, rows: List[Tuple[str, Any]]) -> Any:
    root: Dict[str, Any] = {}
    prefix = base + "/"
    for path, value in rows:
        if path == base:
            return value
        parts = path[len(prefix):].split("/")
        node = root
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return root or None


class PostgresStore(SharedStore):
    def __init__(self, dsn: str = None):
        self.dsn = dsn
        self._subs: Dict[int, Tuple[str, Callback]] = {}
        self._sub_ids = itertools.count(1)
        self._lock = threading.Lock()
        self._listener = None
        self._stop = threading.Event()

    def ensure_schema(self) -> None:
        try:
            with db(self.dsn) as conn, conn.cursor() as cur:
                cur.execute("""
                CREATE TABLE IF NOT EXISTS store_nodes (
                  path TEXT PRIMARY KEY,
                  value JSONB NOT NULL,
                  updated_at TIMESTAMPTZ DEFAULT now()
                );
                """)
                conn.commit()
        except psycopg.OperationalError as e:
            raise StoreUnavailable(f"store schema: {e}") from e

    # ---- reads ----
    def get(self, path: str) -> Any:
        path = "/".join(split_path(path))
        try:
            with db(self.dsn) as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT path, value FROM store_nodes
                    WHERE path = %s OR starts_with(path, %s)
                    ORDER BY path;
                    """,
                    (path, path + "/"),
                )
                rows = [(r["path"], r["value"]) for r in cur.fetchall()]
        except psycopg.OperationalError as e:
            raise StoreUnavailable(f"store read {path}: {e}") from e
        return assemble(path, rows)

    # ---- writes ----
    def _write_many(self, items: List[Tuple[str, Any]]) -> None:
        try:
            with db(self.dsn) as conn, conn.cursor() as cur:
                for path, value in items:
                    parts = split_path(path)
                    path = "/".join(parts)
                    ancestors = ["/".join(parts[:i]) for i in range(1, len(parts))]
                    # 祖先若是葉子，寫入子路徑時要先移除
                    if ancestors:
                        cur.execute("DELETE FROM store_nodes WHERE path = ANY(%s);", (ancestors,))
                    cur.execute(
                        "DELETE FROM store_nodes WHERE path = %s OR starts_with(path, %s);",
                        (path, path + "/"),
                    )
                    for leaf_path, leaf in flatten(path, value):
                        cur.execute(
                            """
                            INSERT INTO store_nodes (path, value, updated_at)
                            VALUES (%s, %s, now())
                            ON CONFLICT (path) DO UPDATE
                            SET value = EXCLUDED.value, updated_at = now();
                            """,
                            (leaf_path, Jsonb(leaf)),
                        )
                    cur.execute("SELECT pg_notify(%s, %s);", (CHANNEL, path))
                conn.commit()
        except psycopg.OperationalError as e:
            raise StoreUnavailable(f"store write: {e}") from e

    def set(self, path: str, value: Any) -> None:
        self._write_many([(path, value)])

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        self._write_many([(join_path(path, k), v) for k, v in changes.items()])

    # ---- subscriptions ----
    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        split_path(path)
        with self._lock:
            sid = next(self._sub_ids)
            self._subs[sid] = (path, callback)
            if self._listener is None:
                self._stop.clear()
                self._listener = threading.Thread(target=self._listen, name="store-listener", daemon=True)
                self._listener.start()
        callback(self.get(path))

        def unsubscribe() -> None:
            with self._lock:
                self._subs.pop(sid, None)

        return unsubscribe

    def close(self) -> None:
        self._stop.set()

    def _dispatch(self, changed: str) -> None:
        with self._lock:
            targets = [(p, cb) for p, cb in self._subs.values() if related(p, changed)]
        for sub_path, cb in targets:
            try:
                cb(self.get(sub_path))
            except StoreUnavailable as e:
                log.warning("re-read of %s failed: %s", sub_path, e)
            except Exception:
                log.exception("subscriber for %s failed", sub_path)

    def _listen(self) -> None:
        while not self._stop.is_set():
            try:
                with db(self.dsn, autocommit=True) as conn:
                    conn.execute(f"LISTEN {CHANNEL};")
                    while not self._stop.is_set():
                        for note in conn.notifies(timeout=1.0):
                            self._dispatch(note.payload)
            except psycopg.OperationalError as e:
                log.warning("store listener lost connection: %s", e)
                self._stop.wait(2)
