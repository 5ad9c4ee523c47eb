"""Local-first document engine with debounced profile sync."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from copy import deepcopy
from datetime import UTC, datetime
from typing import Any

from ..const import (
    DEFAULT_SYNC_INTERVAL_MS,
    DEFAULT_VIEW_OPTIONS,
    STORE_KEY_DOCUMENT,
    STORE_KEY_PROFILE,
    STORE_KEY_VIEW_OPTIONS,
)
from ..document import Document, default_document, migrate
from ..utils.logging import warn_once
from .claim import normalise_profile_name
from .conflict import ConflictHandler, ConflictResolution, ConflictResolver, PendingConflict
from .identity import get_or_create_device_token
from .local_store import FallbackLocalStore, LocalStore
from .remote import RemoteProfileService
from .results import (
    Conflict,
    Found,
    Linked,
    NameTaken,
    PullResult,
    PushResult,
    RateLimited,
    Success,
    SyncError,
    SyncState,
    TransientError,
)
from .scheduler import CallLater, Clock, SyncScheduler, monotonic_ms

_LOGGER = logging.getLogger(__name__)

Transform = Callable[[Document], Document | None]


class SyncEngine:
    """Own one document, its local persistence and its remote profile.

    Every edit goes through :meth:`mutate`, which persists synchronously and
    arms the debounce timer. Pushes always re-read the local store right
    before sending, so a slow push never carries a stale snapshot.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteProfileService,
        *,
        debounce_ms: int = DEFAULT_SYNC_INTERVAL_MS,
        min_push_spacing_ms: int | None = None,
        locale: str | None = None,
        conflict_handler: ConflictHandler | None = None,
        call_later: CallLater | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or _LOGGER
        self.store = store if isinstance(store, FallbackLocalStore) else FallbackLocalStore(store, logger=self.logger)
        self.remote = remote
        self.debounce_ms = debounce_ms
        self.min_push_spacing_ms = debounce_ms if min_push_spacing_ms is None else min_push_spacing_ms
        self.locale = locale
        self._clock = clock or monotonic_ms
        self.scheduler = SyncScheduler(
            self._on_timer,
            interval_ms=debounce_ms,
            call_later=call_later,
            clock=self._clock,
        )
        self.conflicts = ConflictResolver(conflict_handler, logger=self.logger)
        self.state = SyncState.IDLE
        self.dirty = False
        self.device_token = ""
        self.last_error: str | None = None
        self.last_success_at: datetime | None = None
        self.push_attempts = 0
        self._document: Document = {}
        self._profile_name: str | None = None
        self._last_synced: int | None = None
        self._revision = 0
        self._last_attempt_at: float | None = None
        self._in_flight = False
        self._force_pending = False
        self._tasks: set[asyncio.Task] = set()
        self.load()

    # ------------------------------------------------------------------
    # local record

    def load(self) -> None:
        """Initialise the local record from the store (or defaults)."""

        self.device_token = get_or_create_device_token(self.store)
        raw = self.store.read(STORE_KEY_DOCUMENT)
        if raw is None:
            document = default_document()
            self.store.write(STORE_KEY_DOCUMENT, document)
        else:
            document = migrate(raw)
            if document != raw:
                self.store.write(STORE_KEY_DOCUMENT, document)
        self._document = document
        self._profile_name, self._last_synced = self._read_profile_entry()
        self.dirty = False
        self.state = SyncState.IDLE

    @property
    def document(self) -> Document:
        return deepcopy(self._document)

    @property
    def profile_name(self) -> str | None:
        return self._profile_name

    @property
    def last_synced_timestamp(self) -> int | None:
        return self._last_synced

    @property
    def view_options(self) -> dict[str, Any]:
        raw = self.store.read(STORE_KEY_VIEW_OPTIONS)
        options = dict(DEFAULT_VIEW_OPTIONS)
        if isinstance(raw, Mapping):
            options.update(raw)
        return options

    @property
    def pending_conflict(self) -> PendingConflict | None:
        return self.conflicts.pending

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _read_profile_entry(self) -> tuple[str | None, int | None]:
        raw = self.store.read(STORE_KEY_PROFILE)
        if isinstance(raw, str):
            return raw.strip() or None, None
        if not isinstance(raw, Mapping):
            return None, None
        name_raw = raw.get("name")
        name = name_raw.strip() if isinstance(name_raw, str) and name_raw.strip() else None
        last = raw.get("last_synced")
        if isinstance(last, bool) or not isinstance(last, int):
            last = None
        return name, last

    def _write_profile_entry(self) -> None:
        if self._profile_name is None:
            self.store.write(STORE_KEY_PROFILE, None)
            return
        self.store.write(STORE_KEY_PROFILE, {"name": self._profile_name, "last_synced": self._last_synced})

    def _read_local_document(self) -> Document:
        raw = self.store.read(STORE_KEY_DOCUMENT)
        if isinstance(raw, dict):
            return raw
        return deepcopy(self._document)

    # ------------------------------------------------------------------
    # mutations

    def mutate(self, transform: Transform) -> Document:
        """Apply ``transform`` to the document, persist it and arm autosave.

        ``transform`` receives a copy of the current document and may either
        return a new document or edit the copy in place and return ``None``.
        """

        current = deepcopy(self._document)
        updated = transform(current)
        if updated is None:
            updated = current
        if not isinstance(updated, Mapping):
            raise TypeError(f"transform must return a mapping, got {type(updated).__name__}")
        self._document = dict(updated)
        self.store.write(STORE_KEY_DOCUMENT, self._document)
        self._mark_dirty()
        return self.document

    def import_document(self, raw: Any) -> Document:
        """Replace the document with imported data, upgraded to the current shape."""

        imported = migrate(raw)
        return self.mutate(lambda _current: imported)

    def reset_to_defaults(self) -> Document:
        """Re-initialise the document. The device token is kept."""

        return self.mutate(lambda _current: default_document())

    def set_view_option(self, key: str, value: Any) -> None:
        options = self.view_options
        options[str(key)] = value
        self.store.write(STORE_KEY_VIEW_OPTIONS, options)
        self._mark_dirty()

    def _mark_dirty(self) -> None:
        self._revision += 1
        self.dirty = True
        if not self.conflicts.paused:
            self.state = SyncState.DIRTY
        self.scheduler.arm()

    # ------------------------------------------------------------------
    # scheduling

    def _on_timer(self) -> None:
        self._spawn(self.tick())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guarded(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as err:  # pragma: no cover
            self.logger.exception("Unexpected sync error: %s", err)
            self.last_error = str(err)
            if self.dirty and not self.conflicts.paused:
                self.state = SyncState.DIRTY
            return None

    async def tick(self) -> PushResult | None:
        """Timer callback: push when there is something to push."""

        if self.conflicts.paused or not self.dirty:
            return None
        return await self._push()

    async def save_now(self) -> PushResult | None:
        """Manual save. Subject to the same spacing guard as autosave."""

        return await self.tick()

    async def async_wait_idle(self) -> None:
        """Wait for every timer-started push to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def async_close(self) -> None:
        self.scheduler.cancel()
        await self.async_wait_idle()

    # ------------------------------------------------------------------
    # push path

    async def _push(self) -> PushResult | None:
        name = self._profile_name
        if not name:
            self.logger.debug("Skipping push: no profile name claimed yet")
            return None
        if self._in_flight:
            self.logger.debug("Skipping push: another push is in flight")
            return None
        remaining = self._spacing_remaining()
        if remaining > 0:
            self.logger.debug(
                "Skipping push: next attempt allowed in %.0f ms (minimum spacing %s ms)",
                remaining,
                self.min_push_spacing_ms,
            )
            if not self.scheduler.pending:
                self.scheduler.arm(remaining)
            return None
        return await self._send(name, force=self._force_pending)

    def _spacing_remaining(self) -> float:
        """Milliseconds until another push attempt is allowed."""

        if self._last_attempt_at is None:
            return 0.0
        return max(0.0, self.min_push_spacing_ms - (self._clock() - self._last_attempt_at))

    async def _send(self, name: str, *, force: bool = False, bootstrap: bool = False) -> PushResult:
        if self._in_flight:
            raise SyncError("a push is already in flight", reason="busy")
        document = self._read_local_document()
        revision = self._revision
        baseline = None if bootstrap else self._last_synced
        self._in_flight = True
        self._last_attempt_at = self._clock()
        self.push_attempts += 1
        self.state = SyncState.SAVING
        try:
            result = await self.remote.push(
                name,
                document,
                baseline,
                self.device_token,
                force=force,
                view_options=self.view_options,
                locale=self.locale,
            )
        finally:
            self._in_flight = False
        self._handle_push_result(name, result, document, revision, baseline, force=force, bootstrap=bootstrap)
        if isinstance(result, Conflict) and self.conflicts.handler is not None:
            await self._consult_conflict_handler()
        return result

    def _handle_push_result(
        self,
        name: str,
        result: PushResult,
        document: Document,
        revision: int,
        baseline: int | None,
        *,
        force: bool,
        bootstrap: bool,
    ) -> None:
        if not bootstrap and name != self._profile_name:
            self.logger.debug("Ignoring push result for %s: active profile changed", name)
            self._settle_state()
            return

        if isinstance(result, Success):
            if bootstrap:
                self._profile_name = name
                self._last_synced = result.server_timestamp
            else:
                self._advance_baseline(result.server_timestamp)
            self._write_profile_entry()
            if force:
                self._force_pending = False
            self.last_error = None
            self.last_success_at = datetime.now(tz=UTC)
            if revision == self._revision:
                self.dirty = False
                self.state = SyncState.SAVED
            else:
                self._settle_state()
            return

        if isinstance(result, Conflict):
            self.state = SyncState.CONFLICT
            self.last_error = "conflict"
            self.conflicts.record(name, result, document, baseline)
            return

        if isinstance(result, RateLimited):
            self.last_error = "rate_limited"
            self._restore_idle_state()
            if not bootstrap:
                # single retry once the spacing interval has passed
                self.scheduler.arm(self.debounce_ms)
            return

        if isinstance(result, NameTaken):
            self.last_error = "name_taken"
            if not bootstrap:
                warn_once(self.logger, "profile_name_taken", "profile %s is not linked to this device", name)
            self._restore_idle_state()
            return

        if isinstance(result, TransientError):
            self.last_error = result.reason
            warn_once(self.logger, "profile_push_failed", "push for %s failed: %s", name, result.reason)
            self._restore_idle_state()
            return

        self.logger.warning("Unexpected push result %r", result)
        self._restore_idle_state()

    def _advance_baseline(self, timestamp: int) -> None:
        if self._last_synced is not None and timestamp < self._last_synced:
            self.logger.warning(
                "Ignoring server timestamp %s older than baseline %s", timestamp, self._last_synced
            )
            return
        self._last_synced = timestamp

    def _restore_idle_state(self) -> None:
        self.state = SyncState.DIRTY if self.dirty else SyncState.IDLE

    def _settle_state(self) -> None:
        """Keep pushing edits that arrived while a push was in flight."""

        self._restore_idle_state()
        if self.dirty and not self.scheduler.pending and not self.conflicts.paused:
            self.scheduler.arm()

    # ------------------------------------------------------------------
    # conflicts

    async def _consult_conflict_handler(self) -> None:
        resolution = await self.conflicts.decide()
        if resolution is not None:
            await self.resolve_conflict(resolution)

    async def resolve_conflict(self, resolution: ConflictResolution | str) -> PushResult | None:
        """Apply the user's decision for the pending conflict.

        ``ADOPT_REMOTE`` replaces the local document with the server copy.
        ``FORCE_OVERWRITE`` pushes the *current* local document with the
        timestamp comparison disabled; edits made while the decision was
        pending are included.
        When the last attempt was too recent the forced push is scheduled for
        the end of the spacing window and ``None`` is returned.
        """

        if self._in_flight:
            raise SyncError("cannot resolve a conflict while a push is in flight", reason="busy")
        pending, choice = self.conflicts.take(resolution)
        if choice is ConflictResolution.ADOPT_REMOTE:
            self.logger.info("Adopting server copy of %s", pending.profile_name)
            self._adopt(
                pending.profile_name,
                pending.server_document,
                pending.server_timestamp,
                view_options=pending.server_view_options,
            )
            return None

        self.logger.info("Overwriting server copy of %s", pending.profile_name)
        self._force_pending = True
        self.dirty = True
        remaining = self._spacing_remaining()
        if remaining > 0:
            # the forced push waits out the spacing like any other attempt
            self.state = SyncState.DIRTY
            self.scheduler.arm(remaining)
            return None
        return await self._send(pending.profile_name, force=True)

    # ------------------------------------------------------------------
    # adoption, explicit load and restore

    def _adopt(
        self,
        name: str,
        document: Mapping[str, Any],
        timestamp: int,
        *,
        view_options: Mapping[str, Any] | None = None,
    ) -> None:
        migrated = migrate(document)
        self._document = migrated
        self.store.write(STORE_KEY_DOCUMENT, migrated)
        if view_options:
            options = dict(DEFAULT_VIEW_OPTIONS)
            options.update(view_options)
            self.store.write(STORE_KEY_VIEW_OPTIONS, options)
        if name == self._profile_name:
            self._advance_baseline(timestamp)
        else:
            self._profile_name = name
            self._last_synced = timestamp
        self._write_profile_entry()
        self._revision += 1
        self._force_pending = False
        self.conflicts.pending = None
        self.scheduler.cancel()
        self.dirty = False
        self.state = SyncState.SAVED

    async def async_create_profile(self, name: str) -> PushResult:
        """Create-if-absent push used while claiming a name."""

        candidate = normalise_profile_name(name)
        return await self._send(candidate, bootstrap=True)

    async def load_by_name(self, name: str) -> PullResult:
        """Load an existing profile and link this device to it.

        Anyone who knows the name can link a device; profiles are not
        protected by credentials.
        """

        candidate = normalise_profile_name(name)
        if self._in_flight:
            raise SyncError("cannot load a profile while a push is in flight", reason="busy")
        result = await self.remote.pull(candidate)
        if not isinstance(result, Found):
            if isinstance(result, TransientError):
                self.last_error = result.reason
            return result
        profile = result.profile
        self._adopt(
            profile.profile_name or candidate,
            profile.document,
            profile.updated_at,
            view_options=profile.view_options,
        )
        link = await self.remote.link(self._profile_name or candidate, self.device_token)
        if not isinstance(link, Linked):
            reason = link.reason if isinstance(link, TransientError) else "not_found"
            self.last_error = reason
            raise SyncError(f"could not link this device to {candidate}: {reason}", reason="link_failed")
        self.logger.info("Linked device to profile %s", self._profile_name)
        return result

    async def async_restore(self) -> PullResult | None:
        """Restore the profile previously linked to this device token."""

        if self._profile_name:
            return None
        result = await self.remote.fetch_by_device(self.device_token)
        if not isinstance(result, Found):
            return result
        if self.dirty:
            self.logger.info("Not restoring %s: local edits are unsaved", result.profile.profile_name)
            return result
        profile = result.profile
        self._adopt(
            profile.profile_name,
            profile.document,
            profile.updated_at,
            view_options=profile.view_options,
        )
        self.logger.info("Restored profile %s for this device", profile.profile_name)
        return result

    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "dirty": self.dirty,
            "profile_name": self._profile_name,
            "last_synced_timestamp": self._last_synced,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
            "push_attempts": self.push_attempts,
            "push_pending": self.scheduler.pending,
            "in_flight": self._in_flight,
            "conflict": self.conflicts.pending.to_dict() if self.conflicts.pending else None,
            "local_store_degraded": self.store.degraded,
        }


__all__ = ["SyncEngine", "Transform"]
