"""Outcome types exchanged between the sync engine and the profile service."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncError(RuntimeError):
    """Raised when an explicit sync operation cannot be completed."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class SyncState(str, Enum):
    """User-facing sync indicator. Transient, never persisted."""

    IDLE = "idle"
    DIRTY = "dirty"
    SAVING = "saving"
    SAVED = "saved"
    CONFLICT = "conflict"


def _parse_timestamp(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(float(value.strip()))
        except ValueError:
            return None
    return None


@dataclass(slots=True)
class RemoteProfile:
    """A named profile record as held by the profile service."""

    profile_name: str
    document: dict[str, Any]
    updated_at: int
    linked_tokens: frozenset[str] = frozenset()
    view_options: dict[str, Any] = field(default_factory=dict)
    locale: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, updated_at: Any = None) -> RemoteProfile:
        """Build a record from the JSON shape returned by the service."""

        name = str(payload.get("profileName") or payload.get("profile_name") or "").strip()
        document = payload.get("resumeData")
        if document is None:
            document = payload.get("document")
        if isinstance(document, str):
            # older rows store the document as a JSON string
            try:
                document = json.loads(document)
            except json.JSONDecodeError:
                document = {}
        tokens_raw = payload.get("deviceTokens") or payload.get("device_token") or ()
        if isinstance(tokens_raw, str):
            tokens = frozenset(token.strip() for token in tokens_raw.split(",") if token.strip())
        elif isinstance(tokens_raw, list | tuple | set | frozenset):
            tokens = frozenset(str(token) for token in tokens_raw if token)
        else:
            tokens = frozenset()
        view_raw = payload.get("viewOptions")
        view_options = dict(view_raw) if isinstance(view_raw, Mapping) else {}
        locale = payload.get("locale")
        stamp = _parse_timestamp(updated_at)
        if stamp is None:
            stamp = _parse_timestamp(payload.get("updatedAt")) or 0
        return cls(
            profile_name=name,
            document=document if isinstance(document, dict) else {},
            updated_at=stamp,
            linked_tokens=tokens,
            view_options=view_options,
            locale=str(locale) if locale else None,
        )


# ----------------------------------------------------------------------
# push outcomes


@dataclass(slots=True, frozen=True)
class Success:
    server_timestamp: int


@dataclass(slots=True, frozen=True)
class Conflict:
    server_document: dict[str, Any]
    server_timestamp: int
    server_view_options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RateLimited:
    message: str | None = None


@dataclass(slots=True, frozen=True)
class NameTaken:
    message: str | None = None


@dataclass(slots=True, frozen=True)
class TransientError:
    reason: str
    status: int | None = None


# ----------------------------------------------------------------------
# pull / link outcomes


@dataclass(slots=True, frozen=True)
class Found:
    profile: RemoteProfile


@dataclass(slots=True, frozen=True)
class NotFound:
    profile_name: str | None = None


@dataclass(slots=True, frozen=True)
class Linked:
    profile_name: str


PushResult = Success | Conflict | RateLimited | NameTaken | TransientError
PullResult = Found | NotFound | TransientError
LinkResult = Linked | NotFound | TransientError


def parse_push_response(status: int, payload: Any) -> PushResult:
    """Translate a CREATE_OR_UPDATE HTTP response into a push outcome."""

    body: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    if status == 429:
        return RateLimited(message=_message(body))
    if 200 <= status < 300 and body.get("success"):
        stamp = _parse_timestamp(body.get("updatedAt"))
        if stamp is None:
            return TransientError(reason="response missing updatedAt", status=status)
        return Success(server_timestamp=stamp)
    error = body.get("error")
    if status == 409 and error == "conflict":
        server_raw = body.get("serverProfile")
        server = server_raw if isinstance(server_raw, Mapping) else {}
        profile = RemoteProfile.from_payload(server, updated_at=body.get("serverUpdatedAt"))
        return Conflict(
            server_document=profile.document,
            server_timestamp=profile.updated_at,
            server_view_options=profile.view_options,
        )
    if status == 409 and error == "name_taken":
        return NameTaken(message=_message(body))
    return TransientError(reason=_message(body) or f"unexpected status {status}", status=status)


def parse_fetch_response(status: int, payload: Any, *, profile_name: str | None = None) -> PullResult:
    """Translate a FETCH_BY_NAME / FETCH_BY_DEVICE response."""

    body: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    if status != 200:
        return TransientError(reason=_message(body) or f"unexpected status {status}", status=status)
    if not body.get("found"):
        return NotFound(profile_name=profile_name)
    profile_raw = body.get("profile")
    if not isinstance(profile_raw, Mapping):
        return TransientError(reason="response missing profile", status=status)
    return Found(profile=RemoteProfile.from_payload(profile_raw, updated_at=body.get("updatedAt")))


def parse_link_response(status: int, payload: Any, *, profile_name: str) -> LinkResult:
    body: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    if status == 404:
        return NotFound(profile_name=profile_name)
    if status == 200 and body.get("success"):
        return Linked(profile_name=profile_name)
    return TransientError(reason=_message(body) or f"unexpected status {status}", status=status)


def _message(body: Mapping[str, Any]) -> str | None:
    message = body.get("message") or body.get("error")
    return str(message) if message else None


__all__ = [
    "Conflict",
    "Found",
    "LinkResult",
    "Linked",
    "NameTaken",
    "NotFound",
    "PullResult",
    "PushResult",
    "RateLimited",
    "RemoteProfile",
    "Success",
    "SyncError",
    "SyncState",
    "TransientError",
    "parse_fetch_response",
    "parse_link_response",
    "parse_push_response",
]
