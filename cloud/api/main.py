from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from resume_diy.const import (
    DEFAULT_LOCALE,
    DEFAULT_SYNC_INTERVAL_MS,
    DEFAULT_VIEW_OPTIONS,
    DEVICE_TOKEN_MAX_LENGTH,
    PROFILE_NAME_MAX_LENGTH,
    PROFILE_NAME_MIN_LENGTH,
    PROFILES_ENDPOINT,
)

_LOGGER = logging.getLogger(__name__)

Response = tuple[int, dict[str, Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ProfileRecord:
    profile_name: str
    document: dict[str, Any]
    updated_at: int
    created_at: int
    device_tokens: list[str] = field(default_factory=list)
    view_options: dict[str, Any] = field(default_factory=dict)
    locale: str = DEFAULT_LOCALE

    def to_json(self) -> dict[str, Any]:
        return {
            "profileName": self.profile_name,
            "resumeData": deepcopy(self.document),
            "viewOptions": dict(self.view_options),
            "locale": self.locale,
            "deviceTokens": list(self.device_tokens),
            "updatedAt": self.updated_at,
            "createdAt": self.created_at,
        }


class ProfileState:
    """In-memory reference implementation of the profile service."""

    def __init__(
        self,
        *,
        clock: Callable[[], int] | None = None,
        rate_limit_ms: int = DEFAULT_SYNC_INTERVAL_MS,
    ) -> None:
        self.clock = clock or _now_ms
        self.rate_limit_ms = rate_limit_ms
        self.profiles: dict[str, ProfileRecord] = {}
        self.last_save: dict[str, int] = {}

    # ------------------------------------------------------------------
    def create_or_update(
        self,
        profile_name: Any,
        document: Any,
        *,
        device_token: Any = None,
        last_saved_ts: Any = None,
        force: bool = False,
        view_options: Any = None,
        locale: Any = None,
    ) -> Response:
        if not isinstance(profile_name, str) or len(profile_name.strip()) < PROFILE_NAME_MIN_LENGTH:
            return 400, {"error": f"Profile name must be at least {PROFILE_NAME_MIN_LENGTH} characters"}
        if not isinstance(document, Mapping):
            return 400, {"error": "resumeData is required"}
        name = profile_name.strip()[:PROFILE_NAME_MAX_LENGTH]
        token = str(device_token or "")[:DEVICE_TOKEN_MAX_LENGTH]
        now = self.clock()

        if token:
            last = self.last_save.get(token)
            if last is not None and now - last < self.rate_limit_ms:
                return 429, {"error": "rate_limited", "message": "Too frequent. Please wait a few seconds."}
            self.last_save[token] = now

        options = dict(DEFAULT_VIEW_OPTIONS)
        if isinstance(view_options, Mapping):
            options.update(view_options)
        locale_value = str(locale) if locale else DEFAULT_LOCALE

        record = self.profiles.get(name)
        if record is None:
            record = ProfileRecord(
                profile_name=name,
                document=deepcopy(dict(document)),
                updated_at=now,
                created_at=now,
                device_tokens=[token] if token else [],
                view_options=options,
                locale=locale_value,
            )
            self.profiles[name] = record
            _LOGGER.info("Created profile %s", name)
            return 200, {"success": True, "action": "created", "updatedAt": record.updated_at}

        if not token or token not in record.device_tokens:
            return 409, {"error": "name_taken", "message": "This profile name is already taken."}

        known = self._parse_ts(last_saved_ts)
        if not force and known is not None and known < record.updated_at:
            return 409, {
                "error": "conflict",
                "message": "Server has newer data from another device.",
                "serverProfile": record.to_json(),
                "serverUpdatedAt": record.updated_at,
            }

        record.document = deepcopy(dict(document))
        record.view_options = options
        record.locale = locale_value
        # updatedAt is the concurrency token and must strictly increase
        record.updated_at = max(now, record.updated_at + 1)
        return 200, {"success": True, "action": "updated", "updatedAt": record.updated_at}

    def fetch_by_name(self, profile_name: str) -> Response:
        record = self.profiles.get(profile_name.strip())
        if record is None:
            return 200, {"found": False}
        return 200, {"found": True, "profile": record.to_json(), "updatedAt": record.updated_at}

    def fetch_by_device(self, device_token: str) -> Response:
        candidates = [record for record in self.profiles.values() if device_token in record.device_tokens]
        if not candidates:
            return 200, {"found": False}
        record = max(candidates, key=lambda item: item.updated_at)
        return 200, {"found": True, "profile": record.to_json(), "updatedAt": record.updated_at}

    def link(self, profile_name: Any, device_token: Any) -> Response:
        if not profile_name or not device_token:
            return 400, {"error": "profileName and deviceToken required"}
        record = self.profiles.get(str(profile_name).strip())
        if record is None:
            return 404, {"error": "not_found"}
        token = str(device_token)[:DEVICE_TOKEN_MAX_LENGTH]
        if token not in record.device_tokens:
            record.device_tokens.append(token)
            _LOGGER.info("Linked a new device to profile %s", record.profile_name)
        return 200, {"success": True, "action": "linked"}

    @staticmethod
    def _parse_ts(value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


def create_app(state: ProfileState | None = None) -> FastAPI:
    app = FastAPI()
    state = state or ProfileState()
    app.state.state = state

    @app.get(PROFILES_ENDPOINT)
    async def handle_fetch(
        name: str | None = Query(None),
        device_token: str | None = Query(None, alias="deviceToken"),
    ) -> JSONResponse:
        if name:
            status, payload = state.fetch_by_name(name)
        elif device_token:
            status, payload = state.fetch_by_device(device_token)
        else:
            status, payload = 400, {"error": "name or deviceToken required"}
        return JSONResponse(payload, status_code=status)

    @app.post(PROFILES_ENDPOINT)
    async def handle_save(data: dict[str, Any]) -> JSONResponse:
        status, payload = state.create_or_update(
            data.get("profileName"),
            data.get("resumeData"),
            device_token=data.get("deviceToken"),
            last_saved_ts=data.get("lastSavedTs"),
            force=bool(data.get("force", False)),
            view_options=data.get("viewOptions"),
            locale=data.get("locale"),
        )
        return JSONResponse(payload, status_code=status)

    @app.put(PROFILES_ENDPOINT)
    async def handle_link(data: dict[str, Any]) -> JSONResponse:
        status, payload = state.link(data.get("profileName"), data.get("deviceToken"))
        return JSONResponse(payload, status_code=status)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8080)


if __name__ == "__main__":
    main()
