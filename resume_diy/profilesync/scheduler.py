from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from ..const import DEFAULT_SYNC_INTERVAL_MS

_LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]
Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def _loop_call_later(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay_seconds, callback)


class SyncScheduler:
    """Single debounce timer that coalesces bursts into one callback.

    ``arm`` always replaces the pending timer, so a burst of edits leaves
    exactly one callback scheduled ``interval_ms`` after the last edit.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        *,
        interval_ms: int = DEFAULT_SYNC_INTERVAL_MS,
        call_later: CallLater | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._callback = callback
        self.interval_ms = interval_ms
        self._call_later = call_later or _loop_call_later
        self._clock = clock or monotonic_ms
        self._handle: TimerHandle | None = None
        self._due_at: float | None = None
        self.armed_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def due_at(self) -> float | None:
        return self._due_at

    def arm(self, delay_ms: float | None = None) -> None:
        """Cancel any pending timer and start a new one."""

        self.cancel()
        delay = self.interval_ms if delay_ms is None else max(0.0, delay_ms)
        self._due_at = self._clock() + delay
        self._handle = self._call_later(delay / 1000.0, self._fire)
        self.armed_count += 1

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._due_at = None

    def _fire(self) -> None:
        self._handle = None
        self._due_at = None
        _LOGGER.debug("Sync timer fired")
        self._callback()


__all__ = ["CallLater", "Clock", "SyncScheduler", "TimerHandle", "monotonic_ms"]
