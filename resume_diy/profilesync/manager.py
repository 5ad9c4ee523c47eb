"""Wire the sync engine to a local database and the HTTP profile service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from aiohttp import ClientSession

from ..const import (
    CONF_BASE_URL,
    CONF_DEBOUNCE_MS,
    CONF_LOCALE,
    CONF_MIN_PUSH_SPACING_MS,
    CONF_REQUEST_TIMEOUT,
    CONF_STORE_PATH,
    DEFAULT_LOCALE,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STORE_FILENAME,
    DEFAULT_SYNC_INTERVAL_MS,
    LOCALES,
    MIN_SYNC_INTERVAL_MS,
)
from .claim import NameClaim
from .conflict import ConflictHandler
from .engine import SyncEngine
from .local_store import LocalStoreError, MemoryLocalStore, SqliteLocalStore
from .remote import ProfileApiClient

_LOGGER = logging.getLogger(__name__)


def _interval(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return max(MIN_SYNC_INTERVAL_MS, int(value))
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class SyncConfig:
    """Runtime settings for a sync engine."""

    base_url: str = ""
    store_path: str = DEFAULT_STORE_FILENAME
    debounce_ms: int = DEFAULT_SYNC_INTERVAL_MS
    min_push_spacing_ms: int = DEFAULT_SYNC_INTERVAL_MS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    locale: str = DEFAULT_LOCALE

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> SyncConfig:
        base_url = str(options.get(CONF_BASE_URL, "") or "").strip().rstrip("/")
        store_path = str(options.get(CONF_STORE_PATH, "") or "").strip() or DEFAULT_STORE_FILENAME
        debounce_ms = _interval(options.get(CONF_DEBOUNCE_MS), DEFAULT_SYNC_INTERVAL_MS)
        # push spacing follows the debounce window unless set on its own
        min_spacing = _interval(options.get(CONF_MIN_PUSH_SPACING_MS), debounce_ms)
        timeout_raw = options.get(CONF_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT)
        try:
            timeout = float(timeout_raw)
        except (TypeError, ValueError):
            timeout = float(DEFAULT_REQUEST_TIMEOUT)
        if timeout <= 0:
            timeout = float(DEFAULT_REQUEST_TIMEOUT)
        locale = str(options.get(CONF_LOCALE, "") or "").strip().lower()
        if locale not in LOCALES:
            locale = DEFAULT_LOCALE
        return cls(
            base_url=base_url,
            store_path=store_path,
            debounce_ms=debounce_ms,
            min_push_spacing_ms=min_spacing,
            request_timeout=timeout,
            locale=locale,
        )

    @property
    def ready(self) -> bool:
        return bool(self.base_url)


class ResumeSyncManager:
    """Own the HTTP session, local store and engine for one document."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: ClientSession | None = None,
        conflict_handler: ConflictHandler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or _LOGGER
        self._session = session
        self._owns_session = session is None
        self._conflict_handler = conflict_handler
        self.engine: SyncEngine | None = None
        self.claim: NameClaim | None = None
        self.client: ProfileApiClient | None = None

    def _open_store(self) -> SqliteLocalStore | MemoryLocalStore:
        try:
            return SqliteLocalStore(Path(self.config.store_path))
        except LocalStoreError as err:
            self.logger.warning("Local store unavailable, editing in memory only: %s", err)
            return MemoryLocalStore()

    async def async_start(self) -> SyncEngine:
        """Create the engine and restore a previously linked profile."""

        if self.engine is not None:
            return self.engine
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        self.client = ProfileApiClient(
            self._session,
            self.config.base_url,
            timeout=self.config.request_timeout,
            logger=self.logger,
        )
        self.engine = SyncEngine(
            self._open_store(),
            self.client,
            debounce_ms=self.config.debounce_ms,
            min_push_spacing_ms=self.config.min_push_spacing_ms,
            locale=self.config.locale,
            conflict_handler=self._conflict_handler,
            logger=self.logger,
        )
        if self.config.ready:
            await self.engine.async_restore()
        else:
            self.logger.info("No profile service configured; working offline")
        self.claim = NameClaim(self.engine, logger=self.logger)
        return self.engine

    async def async_stop(self) -> None:
        """Cancel the pending push timer, await in-flight pushes and release the HTTP session."""

        if self.engine is not None:
            await self.engine.async_close()
        self.engine = None
        self.claim = None
        self.client = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "configured": self.config.ready,
            "base_url": self.config.base_url or None,
            "store_path": self.config.store_path,
            "debounce_ms": self.config.debounce_ms,
            "min_push_spacing_ms": self.config.min_push_spacing_ms,
            "running": self.engine is not None,
        }
        if self.engine is not None:
            status.update(self.engine.status())
        if self.claim is not None:
            status["claim_state"] = self.claim.state.value
        return status


__all__ = ["ResumeSyncManager", "SyncConfig"]
