from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from copy import deepcopy
from pathlib import Path
from typing import Any, Protocol

from ..utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)


class LocalStoreError(RuntimeError):
    """Raised when device-local persistence is unavailable."""


class LocalStore(Protocol):
    """Synchronous key/value persistence scoped to one device."""

    def read(self, key: str) -> Any | None: ...

    def write(self, key: str, value: Any) -> None: ...


class MemoryLocalStore:
    """Dict-backed store used for tests and as a degraded fallback."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = deepcopy(initial) if initial else {}

    def read(self, key: str) -> Any | None:
        value = self._values.get(key)
        return deepcopy(value) if value is not None else None

    def write(self, key: str, value: Any) -> None:
        self._values[key] = deepcopy(value)

    def snapshot(self) -> dict[str, Any]:
        return deepcopy(self._values)


class SqliteLocalStore:
    """SQLite-backed store that survives process restarts."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._is_memory = str(path) == ":memory:"
        self._shared_conn: sqlite3.Connection | None = None
        if not self._is_memory:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as err:
                raise LocalStoreError(f"cannot create store directory: {err}") from err
        self._ensure_schema()

    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._is_memory:
                if self._shared_conn is None:
                    self._shared_conn = sqlite3.connect(":memory:")
                    self._shared_conn.row_factory = sqlite3.Row
                yield self._shared_conn
            else:
                conn = sqlite3.connect(self.path)
                conn.row_factory = sqlite3.Row
                try:
                    yield conn
                finally:
                    conn.close()
        except sqlite3.Error as err:
            raise LocalStoreError(f"local store unavailable: {err}") from err

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()

    # ------------------------------------------------------------------
    def read(self, key: str) -> Any | None:
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            _LOGGER.warning("Discarding unreadable local entry %s", key)
            return None

    def write(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as err:
            raise LocalStoreError(f"value for {key} is not serializable: {err}") from err
        with self._connection() as conn:
            conn.execute("INSERT OR REPLACE INTO kv(key, value) VALUES(?, ?)", (key, encoded))
            conn.commit()

    def keys(self) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute("SELECT key FROM kv ORDER BY key ASC").fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None


class FallbackLocalStore:
    """Wrap a store and degrade to memory once persistence fails.

    Editing must keep working when the device store is broken, so the first
    :class:`LocalStoreError` switches every later read and write to an
    in-memory mirror seeded with the values seen so far.
    """

    def __init__(self, primary: LocalStore, *, logger: logging.Logger | None = None) -> None:
        self.primary = primary
        self.logger = logger or _LOGGER
        self._mirror = MemoryLocalStore()
        self.degraded = False
        self.last_error: str | None = None

    def read(self, key: str) -> Any | None:
        if self.degraded:
            return self._mirror.read(key)
        try:
            value = self.primary.read(key)
        except LocalStoreError as err:
            self._degrade(err)
            return self._mirror.read(key)
        if value is not None:
            self._mirror.write(key, value)
        return value

    def write(self, key: str, value: Any) -> None:
        self._mirror.write(key, value)
        if self.degraded:
            return
        try:
            self.primary.write(key, value)
        except LocalStoreError as err:
            self._degrade(err)

    def _degrade(self, err: LocalStoreError) -> None:
        self.degraded = True
        self.last_error = str(err)
        warn_once(self.logger, "local_store_unavailable", "continuing in memory only (%s)", err)


__all__ = [
    "FallbackLocalStore",
    "LocalStore",
    "LocalStoreError",
    "MemoryLocalStore",
    "SqliteLocalStore",
]
