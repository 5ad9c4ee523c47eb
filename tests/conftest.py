from __future__ import annotations

from collections.abc import Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from typing import Any

import pytest

from cloud.api.main import ProfileRecord, ProfileState
from resume_diy.const import STORE_KEY_DEVICE_TOKEN, STORE_KEY_DOCUMENT, STORE_KEY_PROFILE
from resume_diy.document import default_document, migrate
from resume_diy.profilesync import (
    MemoryLocalStore,
    SyncEngine,
    parse_fetch_response,
    parse_link_response,
    parse_push_response,
)
from resume_diy.utils.logging import reset_warnings

START_MS = 1_000_000


class ManualTimer:
    def __init__(self, clock: ManualClock, due: float, callback: Callable[[], None]) -> None:
        self.clock = clock
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Millisecond clock whose timers only fire when the test advances it."""

    def __init__(self, start: float = START_MS) -> None:
        self.now = float(start)
        self.timers: list[ManualTimer] = []

    def __call__(self) -> float:
        return self.now

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.now + delay_seconds * 1000.0, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, ms: float) -> None:
        target = self.now + ms
        while True:
            due = sorted((t for t in self.pending if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target

    def set(self, ms: float) -> None:
        self.advance(ms - self.now)


@dataclass
class PushCall:
    profile_name: str
    document: dict[str, Any]
    last_known_timestamp: int | None
    device_token: str
    force: bool
    at: float


class FakeProfileService:
    """In-memory remote backed by the reference service state.

    ``queued`` results are returned instead of calling the service, which
    lets tests inject rate limits and transient failures.
    """

    def __init__(self, state: ProfileState, clock: ManualClock) -> None:
        self.state = state
        self.clock = clock
        self.pushes: list[PushCall] = []
        self.links: list[tuple[str, str]] = []
        self.queued: list[Any] = []

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
    ):
        self.pushes.append(
            PushCall(profile_name, deepcopy(dict(document)), last_known_timestamp, device_token, force, self.clock.now)
        )
        if self.queued:
            return self.queued.pop(0)
        status, payload = self.state.create_or_update(
            profile_name,
            deepcopy(dict(document)),
            device_token=device_token,
            last_saved_ts=last_known_timestamp,
            force=force,
            view_options=view_options,
            locale=locale,
        )
        return parse_push_response(status, payload)

    async def pull(self, profile_name: str):
        status, payload = self.state.fetch_by_name(profile_name)
        return parse_fetch_response(status, payload, profile_name=profile_name)

    async def fetch_by_device(self, device_token: str):
        status, payload = self.state.fetch_by_device(device_token)
        return parse_fetch_response(status, payload)

    async def link(self, profile_name: str, device_token: str):
        self.links.append((profile_name, device_token))
        status, payload = self.state.link(profile_name, device_token)
        return parse_link_response(status, payload, profile_name=profile_name)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def profile_state(clock: ManualClock) -> ProfileState:
    # engine-side spacing is under test; the service does not throttle here
    return ProfileState(clock=lambda: int(clock.now), rate_limit_ms=0)


@pytest.fixture
def remote(profile_state: ProfileState, clock: ManualClock) -> FakeProfileService:
    return FakeProfileService(profile_state, clock)


@pytest.fixture
def make_engine(clock: ManualClock, remote: FakeProfileService):
    """Build engines sharing the manual clock and the fake service."""

    def factory(
        store: MemoryLocalStore | None = None,
        *,
        service: Any = None,
        profile: Mapping[str, Any] | str | None = None,
        token: str | None = None,
        document: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> SyncEngine:
        store = store if store is not None else MemoryLocalStore()
        if profile is not None:
            store.write(STORE_KEY_PROFILE, profile)
        if token is not None:
            store.write(STORE_KEY_DEVICE_TOKEN, token)
        if document is not None:
            store.write(STORE_KEY_DOCUMENT, document)
        return SyncEngine(
            store,
            service if service is not None else remote,
            call_later=clock.call_later,
            clock=clock,
            **kwargs,
        )

    return factory


@pytest.fixture
def seed_profile(profile_state: ProfileState):
    """Place a profile on the service as if another device had created it."""

    def seed(
        name: str,
        *,
        updated_at: int,
        tokens: tuple[str, ...] | list[str] = (),
        document: Mapping[str, Any] | None = None,
    ) -> ProfileRecord:
        record = ProfileRecord(
            profile_name=name,
            document=migrate(document) if document is not None else default_document(),
            updated_at=updated_at,
            created_at=updated_at,
            device_tokens=list(tokens),
        )
        profile_state.profiles[name] = record
        return record

    return seed


@pytest.fixture(autouse=True)
def _reset_throttled_warnings():
    reset_warnings()
    yield
    reset_warnings()
