from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..const import PROFILE_NAME_MAX_LENGTH, PROFILE_NAME_MIN_LENGTH
from .results import Found, NameTaken, NotFound, PushResult, Success, SyncError

if TYPE_CHECKING:
    from .engine import SyncEngine

_LOGGER = logging.getLogger(__name__)


class ProfileNameError(ValueError):
    """Raised when a candidate profile name cannot be used."""


def normalise_profile_name(name: Any) -> str:
    """Trim ``name`` and check it against the service's length limits."""

    if not isinstance(name, str):
        raise ProfileNameError("profile name must be a string")
    candidate = name.strip()
    if len(candidate) < PROFILE_NAME_MIN_LENGTH:
        raise ProfileNameError(f"profile name must be at least {PROFILE_NAME_MIN_LENGTH} characters")
    return candidate[:PROFILE_NAME_MAX_LENGTH]


class ClaimState(str, Enum):
    NO_NAME = "no_name"
    NAME_COLLISION = "name_collision"
    LINKED = "linked"


class NameClaim:
    """Bootstrap the association between a chosen name and this device.

    ``submit`` tries to create the profile. When the name already belongs to
    another device the claim moves to ``NAME_COLLISION`` and the user either
    ``claim``s the existing profile (adopting its document and linking this
    device) or goes back with ``choose_different_name``.

    There is deliberately no password: knowing the name is enough to link.
    """

    def __init__(self, engine: SyncEngine, *, logger: logging.Logger | None = None) -> None:
        self.engine = engine
        self.logger = logger or _LOGGER
        self.candidate: str | None = None
        self.last_result: Any = None
        self.last_error: str | None = None
        self.state = ClaimState.LINKED if engine.profile_name else ClaimState.NO_NAME

    async def submit(self, name: str) -> ClaimState:
        if self.state is not ClaimState.NO_NAME:
            raise SyncError(f"cannot submit a name while {self.state.value}", reason="invalid_state")
        candidate = normalise_profile_name(name)
        result: PushResult = await self.engine.async_create_profile(candidate)
        self.last_result = result
        if isinstance(result, Success):
            self.candidate = None
            self.last_error = None
            self.state = ClaimState.LINKED
            self.logger.info("Created profile %s", candidate)
        elif isinstance(result, NameTaken):
            self.candidate = candidate
            self.last_error = None
            self.state = ClaimState.NAME_COLLISION
            self.logger.info("Profile name %s already registered by another device", candidate)
        else:
            self.last_error = self.engine.last_error or type(result).__name__
        return self.state

    async def claim(self) -> ClaimState:
        """Take over the existing profile for :attr:`candidate`."""

        if self.state is not ClaimState.NAME_COLLISION or self.candidate is None:
            raise SyncError("there is no name collision to claim", reason="invalid_state")
        try:
            result = await self.engine.load_by_name(self.candidate)
        except SyncError as err:
            self.last_error = err.reason or str(err)
            return self.state
        self.last_result = result
        if isinstance(result, Found):
            self.candidate = None
            self.last_error = None
            self.state = ClaimState.LINKED
        elif isinstance(result, NotFound):
            # profile vanished since the collision; the name is free again
            self.candidate = None
            self.last_error = "not_found"
            self.state = ClaimState.NO_NAME
        else:
            self.last_error = self.engine.last_error
        return self.state

    def choose_different_name(self) -> ClaimState:
        if self.state is not ClaimState.NAME_COLLISION:
            raise SyncError("there is no name collision to back out of", reason="invalid_state")
        self.candidate = None
        self.last_error = None
        self.state = ClaimState.NO_NAME
        return self.state


__all__ = ["ClaimState", "NameClaim", "ProfileNameError", "normalise_profile_name"]
