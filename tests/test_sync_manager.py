from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from resume_diy.const import (
    CONF_BASE_URL,
    CONF_DEBOUNCE_MS,
    CONF_LOCALE,
    CONF_MIN_PUSH_SPACING_MS,
    CONF_REQUEST_TIMEOUT,
    CONF_STORE_PATH,
    DEFAULT_STORE_FILENAME,
)
from resume_diy.profilesync import ClaimState, LocalStoreError, NotFound, ResumeSyncManager, SyncConfig


def test_config_defaults() -> None:
    config = SyncConfig.from_options({})
    assert config.base_url == ""
    assert config.store_path == DEFAULT_STORE_FILENAME
    assert config.debounce_ms == 5000
    assert config.min_push_spacing_ms == 5000
    assert config.request_timeout == 30
    assert config.locale == "en"
    assert config.ready is False


def test_config_parses_and_clamps_options() -> None:
    config = SyncConfig.from_options(
        {
            CONF_BASE_URL: " https://profiles.example/ ",
            CONF_STORE_PATH: "/data/resume.db",
            CONF_DEBOUNCE_MS: "20",
            CONF_REQUEST_TIMEOUT: "-1",
            CONF_LOCALE: "ZH",
        }
    )
    assert config.base_url == "https://profiles.example"
    assert config.debounce_ms == 100
    assert config.min_push_spacing_ms == 100
    assert config.request_timeout == 30
    assert config.locale == "zh"
    assert config.ready is True


def test_config_spacing_can_differ_from_debounce() -> None:
    config = SyncConfig.from_options({CONF_DEBOUNCE_MS: 2000, CONF_MIN_PUSH_SPACING_MS: 8000, CONF_LOCALE: "fr"})
    assert config.debounce_ms == 2000
    assert config.min_push_spacing_ms == 8000
    assert config.locale == "en"


@pytest.mark.asyncio
async def test_offline_start_builds_engine(tmp_path) -> None:
    session = MagicMock()
    session.close = AsyncMock()
    manager = ResumeSyncManager(SyncConfig(store_path=str(tmp_path / "resume.db")), session=session)

    engine = await manager.async_start()

    assert engine is manager.engine
    assert manager.claim is not None
    assert manager.claim.state is ClaimState.NO_NAME
    assert (tmp_path / "resume.db").exists()
    assert await manager.async_start() is engine
    status = manager.status()
    assert status["configured"] is False
    assert status["running"] is True
    assert status["claim_state"] == "no_name"
    session.request.assert_not_called()

    await manager.async_stop()
    assert manager.engine is None
    session.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_configured_start_restores_and_owns_session(tmp_path) -> None:
    session = MagicMock()
    session.close = AsyncMock()
    client = MagicMock()
    client.fetch_by_device = AsyncMock(return_value=NotFound())
    config = SyncConfig.from_options(
        {CONF_BASE_URL: "https://profiles.example", CONF_STORE_PATH: str(tmp_path / "resume.db")}
    )
    manager = ResumeSyncManager(config)

    with (
        patch("resume_diy.profilesync.manager.ClientSession", return_value=session),
        patch("resume_diy.profilesync.manager.ProfileApiClient", return_value=client) as client_cls,
    ):
        engine = await manager.async_start()

    client_cls.assert_called_once_with(session, "https://profiles.example", timeout=30.0, logger=manager.logger)
    client.fetch_by_device.assert_awaited_once_with(engine.device_token)
    assert engine.min_push_spacing_ms == 5000

    await manager.async_stop()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unusable_store_path_falls_back_to_memory(tmp_path) -> None:
    session = MagicMock()
    manager = ResumeSyncManager(SyncConfig(store_path=str(tmp_path / "resume.db")), session=session)

    with patch("resume_diy.profilesync.manager.SqliteLocalStore", side_effect=LocalStoreError("read-only")):
        engine = await manager.async_start()

    engine.mutate(lambda doc: {**doc, "location": "Memory"})
    assert engine.document["location"] == "Memory"
    assert not (tmp_path / "resume.db").exists()
    await manager.async_stop()
