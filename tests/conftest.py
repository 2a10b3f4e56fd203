"""
Pytest fixtures and test configuration for lifesync tests.
"""

import pytest

from lifesync.config import SyncConfig
from lifesync.core import LifeStore
from lifesync.storage import LocalStore, MemoryBackend
from lifesync.sync import ChangeTracker, FieldMapper, SyncEngine
from lifesync.testing import InMemoryRemoteStore, StaticSession
from lifesync.types import User


@pytest.fixture
def fast_config(tmp_path):
    """Config with short timers so background behaviour is testable."""
    return SyncConfig(
        db_path=tmp_path / "lifesync.db",
        fallback_path=tmp_path / "fallback.json",
        debounce_seconds=0.01,
        sync_interval_seconds=3600,
        call_timeout_seconds=1.0,
        retry_base_seconds=0.05,
        retry_max_seconds=1.0,
    )


@pytest.fixture
def store():
    """An in-memory LocalStore."""
    return LocalStore(MemoryBackend())


@pytest.fixture
def tracker(store):
    return ChangeTracker(store)


@pytest.fixture
def mapper():
    return FieldMapper()


@pytest.fixture
def user():
    return User(id="user-1", email="user@example.com")


@pytest.fixture
def session(user):
    return StaticSession(user)


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


class Device:
    """One client: its own local store, facade and engine, sharing a remote."""

    def __init__(self, remote, session, config):
        self.store = LocalStore(MemoryBackend())
        self.life = LifeStore(self.store)
        self.engine = SyncEngine(
            self.store,
            self.life.tracker,
            self.life.mapper,
            remote,
            session,
            config=config,
        )

    async def sync(self):
        return await self.engine.force_sync()


@pytest.fixture
def make_device(remote, session, fast_config):
    """Factory for devices of the same user. The engine is not attached to
    the facade, so tests decide when cycles run."""

    def _make(session_override=None):
        return Device(remote, session_override or session, fast_config)

    return _make


@pytest.fixture
def device(make_device):
    return make_device()
