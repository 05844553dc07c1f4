"""Persistent command cache with retention sweeps."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .constants import (
    CACHE_MAX_AGE_DAYS,
    CACHE_STORES,
    DYNAMIC_MAX_AGE_S,
    TTL_DYNAMIC,
    TTL_STATIC,
)
from .normalize import normalize_command_text
from .types import NON_CACHEABLE_ACTIONS, ActionKind, CachedEntry, CommandResult

LOGGER = logging.getLogger(__name__)

_STATIC_ACTIONS = frozenset({ActionKind.MIRANDA, ActionKind.STATUTE})


def ttl_class_for(action: ActionKind) -> str:
    return TTL_STATIC if action in _STATIC_ACTIONS else TTL_DYNAMIC


class PersistentStore:
    """SQLite-backed key/value tables, one per cache class.

    Every table carries a ``created_at`` index so retention sweeps never scan
    the full store. All blocking calls run through ``asyncio.to_thread`` in the
    async wrappers; the synchronous methods are guarded by one lock so the
    connection can be shared across worker threads.
    """

    def __init__(self, path: str | Path, *, stores: tuple[str, ...] = CACHE_STORES) -> None:
        self.path = str(path)
        self.stores = stores
        if self.path != ":memory:":
            Path(self.path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            for store in self.stores:
                self._conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {store} ("
                    "key TEXT PRIMARY KEY, value TEXT NOT NULL, "
                    "created_at REAL NOT NULL, ttl_class TEXT NOT NULL)"
                )
                self._conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{store}_created_at ON {store} (created_at)"
                )

    def _check_store(self, store: str) -> None:
        if store not in self.stores:
            raise KeyError(f"Unknown cache store: {store}")

    def read(self, store: str, key: str) -> Optional[tuple[dict[str, Any], float, str]]:
        self._check_store(store)
        with self._lock:
            row = self._conn.execute(
                f"SELECT value, created_at, ttl_class FROM {store} WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return json.loads(row[0]), float(row[1]), str(row[2])

    def write(self, store: str, key: str, value: dict[str, Any], created_at: float, ttl_class: str) -> None:
        self._check_store(store)
        payload = json.dumps(value, ensure_ascii=False, default=str)
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {store} (key, value, created_at, ttl_class) VALUES (?, ?, ?, ?)",
                (key, payload, created_at, ttl_class),
            )

    def delete_older_than(self, store: str, cutoff: float) -> int:
        self._check_store(store)
        with self._lock, self._conn:
            cursor = self._conn.execute(f"DELETE FROM {store} WHERE created_at < ?", (cutoff,))
        return cursor.rowcount

    def count(self, store: str) -> int:
        self._check_store(store)
        with self._lock:
            return int(self._conn.execute(f"SELECT COUNT(*) FROM {store}").fetchone()[0])

    def rows_since(self, store: str, since: float) -> list[dict[str, Any]]:
        self._check_store(store)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT value FROM {store} WHERE created_at >= ? ORDER BY created_at", (since,)
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class CommandCache:
    """Normalized-text → :class:`CommandResult` cache backed by ``PersistentStore``.

    Non-cacheable actions, failed results and fallback results are never
    stored, so a hit is always a real, successful, non-time-sensitive answer.
    """

    store_name = "commands"

    def __init__(
        self,
        store: PersistentStore,
        *,
        max_age_days: int = CACHE_MAX_AGE_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_age_s = max_age_days * 24 * 3600.0
        self._clock = clock
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(text: str) -> str:
        return normalize_command_text(text)

    def is_cacheable(self, result: CommandResult) -> bool:
        if result.action in NON_CACHEABLE_ACTIONS:
            return False
        if not result.success or result.metadata.get("fallback"):
            return False
        return bool(self.key_for(result.command))

    def _get_sync(self, text: str) -> Optional[CachedEntry]:
        key = self.key_for(text)
        row = self.store.read(self.store_name, key) if key else None
        if row is None:
            self.misses += 1
            return None
        value, created_at, ttl_class = row
        result = CommandResult.from_dict(value)
        age = self._clock() - created_at
        limit = self.max_age_s if ttl_class == TTL_STATIC else min(self.max_age_s, DYNAMIC_MAX_AGE_S)
        if result.action in NON_CACHEABLE_ACTIONS or age > limit:
            # Stale rows are left for the sweep; reads never delete.
            self.misses += 1
            return None
        self.hits += 1
        return CachedEntry(key=key, result=result, created_at=created_at, ttl_policy_class=ttl_class)

    def _put_sync(self, result: CommandResult) -> bool:
        if not self.is_cacheable(result):
            return False
        key = self.key_for(result.command)
        self.store.write(
            self.store_name,
            key,
            result.to_dict(),
            self._clock(),
            ttl_class_for(result.action),
        )
        return True

    def sweep(self) -> int:
        cutoff = self._clock() - self.max_age_s
        removed = 0
        for store in self.store.stores:
            removed += self.store.delete_older_than(store, cutoff)
        if removed:
            LOGGER.info("Cache sweep removed %d entries older than %.0fs", removed, self.max_age_s)
        return removed

    async def get(self, text: str) -> Optional[CachedEntry]:
        return await asyncio.to_thread(self._get_sync, text)

    async def put(self, result: CommandResult) -> bool:
        return await asyncio.to_thread(self._put_sync, result)

    async def run_sweeps(self, interval_s: float) -> None:
        """Purge expired entries every ``interval_s`` seconds until cancelled."""

        while True:
            await asyncio.sleep(interval_s)
            try:
                await asyncio.to_thread(self.sweep)
            except sqlite3.Error:
                LOGGER.exception("Cache sweep failed")


__all__ = ["CommandCache", "PersistentStore", "ttl_class_for"]
