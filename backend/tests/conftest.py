"""Shared test fixtures and configuration for roomsync tests."""
import asyncio

import pytest

from roomsync.config import SyncSettings, reset_config
from roomsync.session.identity import generate_session_token
from roomsync.session.manager import RoomSessionManager
from roomsync.store import MemoryStore


async def _settle(rounds: int = 10) -> None:
    """Let every already-scheduled realtime delivery run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _join(store, room_id: str, username: str, token: str = None) -> RoomSessionManager:
    session = RoomSessionManager(store, room_id, token or generate_session_token(), username)
    assert await session.join()
    return session


@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    return MemoryStore()


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def join():
    """Factory joining a participant: ``await join(store, room_id, "ravi")``."""
    return _join


@pytest.fixture
def sync_settings():
    """Short typing timeout so idle tests stay fast."""
    return SyncSettings(typing_idle_seconds=0.05)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Point config loading at empty files so a local settings file never leaks in."""
    monkeypatch.setenv("ROOMSYNC_SETTINGS_FILE", str(tmp_path / "missing.settings.yaml"))
    monkeypatch.setenv("ROOMSYNC_SECRETS_FILE", str(tmp_path / "missing.secrets.yaml"))
    reset_config()
    yield
    reset_config()
