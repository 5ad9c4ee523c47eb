from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from resume_diy.const import DEFAULT_SYNC_INTERVAL_MS, STORE_KEY_PROFILE
from resume_diy.document import migrate
from resume_diy.profilesync import (
    ConflictResolution,
    Success,
    SyncError,
    SyncState,
    TransientError,
)

SERVER_DOC = {
    "name": "Kevin",
    "summary": {"zh": "来自另一台设备", "en": "Written on device B"},
    "skillGroups": [{"label": "Backend", "items": ["Python"]}],
}


def set_summary(text):
    def transform(document):
        document["summary"] = {"zh": text, "en": text}

    return transform


def fingerprint(document) -> str:
    return json.dumps(document, sort_keys=True)


@pytest.fixture
def server_record(seed_profile):
    return seed_profile("kevin", updated_at=150, tokens=["device-a", "device-b"], document=SERVER_DOC)


@pytest.fixture
def stale_engine(make_engine, server_record):
    return make_engine(profile={"name": "kevin", "last_synced": 100}, token="device-a")


async def _provoke_conflict(engine, clock):
    local = engine.mutate(set_summary("edited on device A"))
    clock.advance(5000)
    await engine.async_wait_idle()
    return local


@pytest.mark.asyncio
async def test_stale_push_never_overwrites_either_side(stale_engine, server_record, remote, clock) -> None:
    local = await _provoke_conflict(stale_engine, clock)

    assert stale_engine.state is SyncState.CONFLICT
    assert fingerprint(stale_engine.document) == fingerprint(local)
    assert stale_engine.last_synced_timestamp == 100
    pending = stale_engine.pending_conflict
    assert pending is not None
    assert pending.server_timestamp == 150
    assert pending.server_document == migrate(SERVER_DOC)
    assert pending.local_timestamp == 100
    assert server_record.updated_at == 150
    assert server_record.document == migrate(SERVER_DOC)
    assert remote.pushes[0].last_known_timestamp == 100


@pytest.mark.asyncio
async def test_autosave_paused_while_conflict_pending(stale_engine, remote, clock) -> None:
    await _provoke_conflict(stale_engine, clock)

    stale_engine.mutate(set_summary("more local edits"))
    assert stale_engine.state is SyncState.CONFLICT
    clock.advance(30_000)
    await stale_engine.async_wait_idle()
    assert await stale_engine.save_now() is None
    assert len(remote.pushes) == 1
    assert stale_engine.state is SyncState.CONFLICT


@pytest.mark.asyncio
async def test_adopt_remote_replaces_local_document(stale_engine, clock) -> None:
    await _provoke_conflict(stale_engine, clock)
    stale_engine.mutate(set_summary("discarded"))

    assert await stale_engine.resolve_conflict(ConflictResolution.ADOPT_REMOTE) is None

    assert stale_engine.document == migrate(SERVER_DOC)
    assert stale_engine.last_synced_timestamp == 150
    assert stale_engine.state is SyncState.SAVED
    assert stale_engine.dirty is False
    assert stale_engine.pending_conflict is None
    assert stale_engine.scheduler.pending is False
    assert stale_engine.store.read(STORE_KEY_PROFILE) == {"name": "kevin", "last_synced": 150}


@pytest.mark.asyncio
async def test_force_overwrite_pushes_current_local_document(stale_engine, server_record, remote, clock) -> None:
    await _provoke_conflict(stale_engine, clock)
    latest = stale_engine.mutate(set_summary("edited while deciding"))
    clock.advance(5000)
    await stale_engine.async_wait_idle()

    result = await stale_engine.resolve_conflict("force_overwrite")

    assert isinstance(result, Success)
    forced = remote.pushes[-1]
    assert forced.force is True
    assert forced.document == latest
    assert server_record.document == latest
    assert server_record.updated_at == result.server_timestamp
    assert stale_engine.last_synced_timestamp == result.server_timestamp
    assert result.server_timestamp > 150
    assert stale_engine.state is SyncState.SAVED
    assert stale_engine.dirty is False


@pytest.mark.asyncio
async def test_force_flag_survives_failed_attempt(stale_engine, remote, clock) -> None:
    await _provoke_conflict(stale_engine, clock)
    clock.advance(5000)
    remote.queued.append(TransientError("offline"))

    result = await stale_engine.resolve_conflict(ConflictResolution.FORCE_OVERWRITE)
    assert isinstance(result, TransientError)
    assert stale_engine.pending_conflict is None
    assert stale_engine.state is SyncState.DIRTY

    stale_engine.mutate(set_summary("retry"))
    clock.advance(5000)
    await stale_engine.async_wait_idle()
    assert remote.pushes[-1].force is True
    assert stale_engine.state is SyncState.SAVED

    stale_engine.mutate(set_summary("ordinary edit"))
    clock.advance(5000)
    await stale_engine.async_wait_idle()
    assert remote.pushes[-1].force is False
    assert stale_engine.state is SyncState.SAVED


@pytest.mark.asyncio
async def test_conflict_handler_decides(make_engine, server_record, clock) -> None:
    handler = AsyncMock(return_value=ConflictResolution.ADOPT_REMOTE)
    engine = make_engine(
        profile={"name": "kevin", "last_synced": 100},
        token="device-a",
        conflict_handler=handler,
    )

    await _provoke_conflict(engine, clock)

    handler.assert_awaited_once()
    pending = handler.await_args.args[0]
    assert pending.server_timestamp == 150
    assert pending.profile_name == "kevin"
    assert engine.document == migrate(SERVER_DOC)
    assert engine.state is SyncState.SAVED


@pytest.mark.asyncio
async def test_forced_push_waits_out_service_rate_limit(
    make_engine, server_record, profile_state, remote, clock
) -> None:
    profile_state.rate_limit_ms = DEFAULT_SYNC_INTERVAL_MS
    handler = AsyncMock(return_value=ConflictResolution.FORCE_OVERWRITE)
    engine = make_engine(
        profile={"name": "kevin", "last_synced": 100},
        token="device-a",
        conflict_handler=handler,
    )
    start = clock.now

    local = await _provoke_conflict(engine, clock)

    handler.assert_awaited_once()
    assert len(remote.pushes) == 1
    assert engine.pending_conflict is None
    assert engine.state is SyncState.DIRTY
    assert engine.scheduler.due_at == clock.now + DEFAULT_SYNC_INTERVAL_MS
    assert server_record.updated_at == 150

    clock.advance(DEFAULT_SYNC_INTERVAL_MS)
    await engine.async_wait_idle()

    assert [(push.force, push.at) for push in remote.pushes] == [
        (False, start + 5000),
        (True, start + 10000),
    ]
    assert engine.last_error is None
    assert engine.state is SyncState.SAVED
    assert server_record.document == local
    assert engine.last_synced_timestamp == server_record.updated_at


@pytest.mark.asyncio
async def test_resolve_without_conflict_raises(stale_engine) -> None:
    with pytest.raises(SyncError) as err:
        await stale_engine.resolve_conflict(ConflictResolution.ADOPT_REMOTE)
    assert err.value.reason == "no_conflict"


@pytest.mark.asyncio
async def test_unknown_resolution_keeps_conflict(stale_engine, clock) -> None:
    await _provoke_conflict(stale_engine, clock)
    with pytest.raises(SyncError) as err:
        await stale_engine.resolve_conflict("merge")
    assert err.value.reason == "invalid_resolution"
    assert stale_engine.pending_conflict is not None
    assert stale_engine.state is SyncState.CONFLICT
