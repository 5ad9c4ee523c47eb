from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .results import Conflict, SyncError

_LOGGER = logging.getLogger(__name__)


class ConflictResolution(str, Enum):
    """The two whole-document outcomes a user may pick after a conflict."""

    ADOPT_REMOTE = "adopt_remote"
    FORCE_OVERWRITE = "force_overwrite"


@dataclass(slots=True)
class PendingConflict:
    """A rejected push waiting for the user's decision."""

    profile_name: str
    server_document: dict[str, Any]
    server_timestamp: int
    local_document: dict[str, Any]
    local_timestamp: int | None
    server_view_options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile_name": self.profile_name,
            "server_timestamp": self.server_timestamp,
            "local_timestamp": self.local_timestamp,
        }


ConflictHandler = Callable[[PendingConflict], Awaitable[ConflictResolution | str]]


class ConflictResolver:
    """Hold a detected conflict until exactly one resolution is chosen.

    Autosave stays paused while :attr:`pending` is set. When a blocking
    ``handler`` is configured it is awaited for the decision; otherwise the
    conflict waits for an explicit :meth:`take`.
    """

    def __init__(self, handler: ConflictHandler | None = None, *, logger: logging.Logger | None = None) -> None:
        self.handler = handler
        self.logger = logger or _LOGGER
        self.pending: PendingConflict | None = None

    @property
    def paused(self) -> bool:
        return self.pending is not None

    def record(
        self,
        profile_name: str,
        conflict: Conflict,
        local_document: Mapping[str, Any],
        local_timestamp: int | None,
    ) -> PendingConflict:
        self.pending = PendingConflict(
            profile_name=profile_name,
            server_document=deepcopy(conflict.server_document),
            server_timestamp=conflict.server_timestamp,
            local_document=deepcopy(dict(local_document)),
            local_timestamp=local_timestamp,
            server_view_options=dict(conflict.server_view_options),
        )
        self.logger.info(
            "Profile %s changed on another device (server %s, local %s); autosave paused",
            profile_name,
            conflict.server_timestamp,
            local_timestamp,
        )
        return self.pending

    async def decide(self) -> ConflictResolution | None:
        """Ask the configured handler for a decision, if there is one."""

        if self.pending is None or self.handler is None:
            return None
        choice = await self.handler(self.pending)
        return ConflictResolution(choice)

    def take(self, resolution: ConflictResolution | str) -> tuple[PendingConflict, ConflictResolution]:
        """Consume the pending conflict for ``resolution``."""

        if self.pending is None:
            raise SyncError("no conflict is waiting for a decision", reason="no_conflict")
        try:
            choice = ConflictResolution(resolution)
        except ValueError as err:
            raise SyncError(f"unknown conflict resolution: {resolution}", reason="invalid_resolution") from err
        pending, self.pending = self.pending, None
        return pending, choice


__all__ = ["ConflictHandler", "ConflictResolution", "ConflictResolver", "PendingConflict"]
