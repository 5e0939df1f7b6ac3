"""Shared fixtures for the dropwatch test suite."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from dropwatch.clock import FixedClock
from dropwatch.credentials import StaticSecretResolver
from dropwatch.database.connection import Database
from dropwatch.database.repositories import RepositoryFactory
from dropwatch.domain import (
    Configuration,
    DiscoveryNotification,
    HttpsSettings,
    OutcomeNotification,
    Protocol,
    RemoteFile,
)
from dropwatch.notifier import NotificationError, Notifier
from dropwatch.protocols.base import ProtocolAdapter
from dropwatch.protocols.registry import AdapterRegistry

E2E_INSTANT = datetime(2025, 1, 24, 2, 0, 1, tzinfo=timezone.utc)


class FakeAdapter(ProtocolAdapter):
    """HTTPS adapter stand-in with scripted listings.

    ``files`` maps a resolved path to the files listed there. ``errors``
    is consumed front to back; each entry is raised by one call.
    """

    protocol = Protocol.HTTPS

    def __init__(
        self,
        files: Optional[Dict[str, List[RemoteFile]]] = None,
        errors: Optional[List[Exception]] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(StaticSecretResolver())
        self.files = files or {}
        self.errors = list(errors or [])
        self.delay = delay
        self.calls: List[str] = []
        self.release = asyncio.Event()
        self.block = False

    async def _list(self, path, settings, timeout):
        self.calls.append(path)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.block:
            await self.release.wait()
        if self.errors:
            raise self.errors.pop(0)
        return list(self.files.get(path, []))

    async def _open_session(self, settings, timeout):
        return None


class RecordingNotifier(Notifier):
    """Keeps every notification in memory."""

    def __init__(self, fail_discoveries: bool = False) -> None:
        self.discoveries: List[DiscoveryNotification] = []
        self.outcomes: List[OutcomeNotification] = []
        self.fail_discoveries = fail_discoveries
        self.closed = False

    async def publish_discovery(self, notification: DiscoveryNotification) -> None:
        if self.fail_discoveries:
            raise NotificationError("downstream unavailable")
        self.discoveries.append(notification)

    async def publish_outcome(self, notification: OutcomeNotification) -> None:
        self.outcomes.append(notification)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def db():
    """In-memory database with all tables created."""
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def clock():
    return FixedClock(E2E_INSTANT)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def adapters(fake_adapter):
    return AdapterRegistry({Protocol.HTTPS: fake_adapter})


@pytest.fixture
def make_configuration():
    """Factory for HTTPS configurations with the daily 02:00 UTC schedule."""

    def _make(**overrides) -> Configuration:
        values = dict(
            tenant_id="acme",
            protocol=Protocol.HTTPS,
            settings=HttpsSettings(base_url="https://files.example.com"),
            path_pattern="/files/{yyyy}/{mm}/{dd}",
            name_pattern="data_{yyyymmdd}.csv",
            schedule_expression="0 2 * * *",
            timezone="UTC",
            name="Daily export",
        )
        values.update(overrides)
        return Configuration(**values)

    return _make


@pytest.fixture
def save_configuration(db):
    """Persist configurations into the test database."""

    def _save(*configurations: Configuration) -> None:
        with db.session() as session:
            repo = RepositoryFactory(session).configurations
            for configuration in configurations:
                repo.save(configuration)

    return _save


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI's settings and database at a temporary directory."""
    from dropwatch.config import clear_config_cache

    for name in ("DROPWATCH_DATABASE_URL", "DROPWATCH_NOTIFIER", "DROPWATCH_WEBHOOK_URL"):
        monkeypatch.delenv(name, raising=False)
    config_dir = tmp_path / "config"
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("DROPWATCH_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("DROPWATCH_DATA_DIR", str(data_dir))
    clear_config_cache()
    yield tmp_path
    clear_config_cache()
