from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from aiohttp import ClientError, ClientSession, ClientTimeout

from ..const import DEFAULT_REQUEST_TIMEOUT, PROFILES_ENDPOINT
from .results import (
    LinkResult,
    PullResult,
    PushResult,
    TransientError,
    parse_fetch_response,
    parse_link_response,
    parse_push_response,
)

LOGGER = logging.getLogger(__name__)

# transport and body-decoding failures, reported as TransientError
REQUEST_ERRORS = (ClientError, asyncio.TimeoutError, UnicodeDecodeError)


class RemoteProfileService(Protocol):
    """Operations the sync engine needs from the shared profile store."""

    async def push(
        self,
        profile_name: str,
        document: Mapping[str, Any],
        last_known_timestamp: int | None,
        device_token: str,
        *,
        force: bool = False,
        view_options: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> PushResult: ...

    async def pull(self, profile_name: str) -> PullResult: ...

    async def fetch_by_device(self, device_token: str) -> PullResult: ...

    async def link(self, profile_name: str, device_token: str) -> LinkResult: ...


class ProfileApiClient:
    """HTTP client for the ``/resume-profiles`` endpoint."""

    def __init__(
        self,
        session: ClientSession,
        base_url: str,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = ClientTimeout(total=timeout)
        self.logger = logger or LOGGER
        self.last_error: str | None = None

    @property
    def url(self) -> str:
        return f"{self.base_url}{PROFILES_ENDPOINT}"

    # ------------------------------------------------------------------
    async def push(
        self,
        profile_name: str,
        document: Mapping[str, Any],
        last_known_timestamp: int | None,
        device_token: str,
        *,
        force: bool = False,
        view_options: Mapping[str, Any] | None = None,
        locale: str | None = None,
    ) -> PushResult:
        body: dict[str, Any] = {
            "profileName": profile_name,
            "resumeData": dict(document),
            "viewOptions": dict(view_options or {}),
            "deviceToken": device_token,
            "lastSavedTs": last_known_timestamp,
            "force": force,
        }
        if locale:
            body["locale"] = locale
        try:
            status, payload = await self._request("POST", json_body=body)
        except REQUEST_ERRORS as err:
            return self._transient("push", err)
        return parse_push_response(status, payload)

    async def pull(self, profile_name: str) -> PullResult:
        try:
            status, payload = await self._request("GET", params={"name": profile_name})
        except REQUEST_ERRORS as err:
            return self._transient("pull", err)
        return parse_fetch_response(status, payload, profile_name=profile_name)

    async def fetch_by_device(self, device_token: str) -> PullResult:
        try:
            status, payload = await self._request("GET", params={"deviceToken": device_token})
        except REQUEST_ERRORS as err:
            return self._transient("fetch_by_device", err)
        return parse_fetch_response(status, payload)

    async def link(self, profile_name: str, device_token: str) -> LinkResult:
        body = {"profileName": profile_name, "deviceToken": device_token}
        try:
            status, payload = await self._request("PUT", json_body=body)
        except REQUEST_ERRORS as err:
            return self._transient("link", err)
        return parse_link_response(status, payload, profile_name=profile_name)

    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
    ) -> tuple[int, Any]:
        async with self.session.request(
            method,
            self.url,
            params=params,
            json=json_body,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        ) as resp:
            text = await resp.text()
            status = resp.status
        self.last_error = None
        return status, self._parse_body(text)

    def _parse_body(self, text: str) -> Any:
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"message": text.strip()[:200]}

    def _transient(self, operation: str, err: Exception) -> TransientError:
        reason = str(err) or type(err).__name__
        self.logger.warning("Profile %s failed: %s", operation, reason)
        self.last_error = reason
        return TransientError(reason=reason)


__all__ = ["ProfileApiClient", "RemoteProfileService"]
