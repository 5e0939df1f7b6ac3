"""Tests for daemon service."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from dropwatch.config import DropwatchConfig
from dropwatch.daemon.service import (
    Components,
    DropwatchDaemon,
    build_components,
    create_notifier,
    daemonize,
    run_daemon,
)
from dropwatch.domain import Protocol
from dropwatch.notifier import LoggingNotifier, WebhookNotifier
from dropwatch.scheduler.lease import SqlLeaseStore
from dropwatch.scheduler.schedule_evaluator import ApschedulerCronStrategy


@pytest.fixture
def config(tmp_path):
    """Configuration using an in-memory database."""
    return DropwatchConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        database_url="sqlite://",
    )


@pytest.fixture
def mock_components():
    """Components with a mocked loop and notifier."""
    loop = Mock()
    loop.start = AsyncMock()
    loop.stop = AsyncMock(return_value=0)
    notifier = Mock()
    notifier.close = AsyncMock()
    return Components(
        db=Mock(),
        notifier=notifier,
        evaluator=Mock(),
        governor=Mock(),
        coordinator=Mock(),
        loop=loop,
    )


class TestCreateNotifier:
    """Tests for create_notifier()."""

    def test_logging_by_default(self, config):
        """Test the default notifier logs."""
        assert isinstance(create_notifier(config), LoggingNotifier)

    @pytest.mark.asyncio
    async def test_webhook(self, config):
        """Test the webhook notifier is used when configured."""
        config.notifier.kind = "webhook"
        config.notifier.webhook_url = "https://hooks.example.com/x"

        notifier = create_notifier(config)

        assert isinstance(notifier, WebhookNotifier)
        await notifier.close()

    def test_webhook_without_url_falls_back(self, config):
        """Test a webhook notifier without URL logs instead."""
        config.notifier.kind = "webhook"
        assert isinstance(create_notifier(config), LoggingNotifier)


class TestBuildComponents:
    """Tests for build_components()."""

    def test_wires_settings(self, config):
        """Test scheduler settings reach the components."""
        config.scheduler.max_concurrent_checks = 7
        config.scheduler.polling_interval_seconds = 15

        components = build_components(config)

        assert components.governor.max_concurrent == 7
        assert components.loop._polling_interval == 15
        assert components.loop._retention.execution_retention.days == 30
        assert components.governor._lease_store is None
        components.db.dispose()

    def test_distributed_locking_uses_sql_leases(self, config):
        """Test enabling distributed locking attaches a SQL lease store."""
        config.scheduler.enable_distributed_locking = True
        config.instance_id = "node-a"

        components = build_components(config)

        store = components.governor._lease_store
        assert isinstance(store, SqlLeaseStore)
        assert store.owner == "node-a"
        components.db.dispose()

    def test_cron_backend(self, config):
        """Test the configured cron backend is used for every expression."""
        config.scheduler.cron_backend = "apscheduler"

        components = build_components(config)

        assert isinstance(components.evaluator.strategy_for("0 2 * * *"), ApschedulerCronStrategy)
        components.db.dispose()

    def test_adapter_pool_sized_to_concurrency(self, config):
        """Test blocking adapters share one worker pool sized to max_concurrent_checks."""
        config.scheduler.max_concurrent_checks = 3

        components = build_components(config)

        registry = components.coordinator._adapters
        assert components.executor._max_workers == 3
        assert registry.get(Protocol.FTP)._executor is components.executor
        assert registry.get(Protocol.OBJECT_STORAGE)._executor is components.executor
        components.shutdown_executor()
        assert components.executor is None
        components.db.dispose()

    def test_metrics_persisted_in_data_dir(self, config):
        """Test the coordinator and loop share a collector writing to the data directory."""
        components = build_components(config)

        assert components.metrics.snapshot_path == config.data_dir / "metrics.json"
        assert components.coordinator._metrics is components.metrics
        assert components.loop._metrics is components.metrics
        components.shutdown_executor()
        components.db.dispose()

    def test_passed_collaborators_used(self, config, db, notifier):
        """Test injected collaborators are not rebuilt."""
        components = build_components(config, db=db, notifier=notifier)

        assert components.db is db
        assert components.notifier is notifier


class TestDropwatchDaemon:
    """Tests for DropwatchDaemon class."""

    @pytest.mark.asyncio
    async def test_daemon_initialization(self, config):
        """Test daemon initialization."""
        daemon = DropwatchDaemon(config)

        assert daemon._config is config
        assert daemon.is_running is False
        assert daemon.loop is None

    @pytest.mark.asyncio
    async def test_daemon_start(self, config, mock_components):
        """Test daemon start."""
        daemon = DropwatchDaemon(config, components=mock_components)

        await daemon.start()

        assert daemon.is_running is True
        assert daemon.loop is mock_components.loop
        mock_components.loop.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_daemon_start_builds_components(self, config, mock_components):
        """Test components are built from configuration when not given."""
        daemon = DropwatchDaemon(config)

        with patch("dropwatch.daemon.service.build_components", return_value=mock_components) as build:
            await daemon.start()

        build.assert_called_once_with(config)
        assert daemon.is_running is True

    @pytest.mark.asyncio
    async def test_daemon_start_twice(self, config, mock_components):
        """Test starting a running daemon raises."""
        daemon = DropwatchDaemon(config, components=mock_components)
        await daemon.start()

        with pytest.raises(RuntimeError, match="already running"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_daemon_stop(self, config, mock_components):
        """Test stop drains the loop and releases resources."""
        daemon = DropwatchDaemon(config, components=mock_components)
        await daemon.start()

        await daemon.stop()

        assert daemon.is_running is False
        mock_components.loop.stop.assert_awaited_once()
        mock_components.notifier.close.assert_awaited_once()
        mock_components.db.dispose.assert_called_once()

    @pytest.mark.asyncio
    async def test_daemon_stop_shuts_down_adapter_pool(self, config, mock_components):
        """Test stop releases the adapter worker threads."""
        executor = Mock()
        mock_components.executor = executor
        daemon = DropwatchDaemon(config, components=mock_components)
        await daemon.start()

        await daemon.stop()

        executor.shutdown.assert_called_once_with(wait=False, cancel_futures=True)
        assert mock_components.executor is None

    @pytest.mark.asyncio
    async def test_daemon_stop_tolerates_errors(self, config, mock_components):
        """Test a failing loop stop still closes the notifier."""
        mock_components.loop.stop.side_effect = RuntimeError("boom")
        daemon = DropwatchDaemon(config, components=mock_components)
        await daemon.start()

        await daemon.stop()

        mock_components.notifier.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_daemon_stop_before_start(self, config):
        """Test stopping a daemon that never started."""
        daemon = DropwatchDaemon(config)
        await daemon.stop()
        assert daemon.is_running is False

    @pytest.mark.asyncio
    async def test_request_shutdown(self, config):
        """Test run_until_shutdown returns after request_shutdown."""
        daemon = DropwatchDaemon(config)

        waiter = asyncio.create_task(daemon.run_until_shutdown())
        await asyncio.sleep(0)
        daemon.request_shutdown()

        await asyncio.wait_for(waiter, timeout=1)


class TestRunDaemon:
    """Tests for run_daemon function."""

    @pytest.mark.asyncio
    async def test_run_daemon_applies_options(self, config):
        """Test CLI overrides are applied and the daemon is started and stopped."""
        mock_daemon = MagicMock()
        mock_daemon.start = AsyncMock()
        mock_daemon.run_until_shutdown = AsyncMock()
        mock_daemon.stop = AsyncMock()

        with patch("dropwatch.daemon.service.DropwatchDaemon", return_value=mock_daemon):
            await run_daemon(config, {"max_concurrent": 12, "polling_interval": 5})

        assert config.scheduler.max_concurrent_checks == 12
        assert config.scheduler.polling_interval_seconds == 5
        mock_daemon.start.assert_awaited_once()
        mock_daemon.run_until_shutdown.assert_awaited_once()
        mock_daemon.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_daemon_stops_on_start_failure(self, config):
        """Test the daemon is stopped even when start fails."""
        mock_daemon = MagicMock()
        mock_daemon.start = AsyncMock(side_effect=RuntimeError("no database"))
        mock_daemon.stop = AsyncMock()

        with patch("dropwatch.daemon.service.DropwatchDaemon", return_value=mock_daemon):
            with pytest.raises(RuntimeError):
                await run_daemon(config)

        mock_daemon.stop.assert_awaited_once()


class TestDaemonize:
    """Tests for daemonize function."""

    def test_daemonize_on_windows(self):
        """Test daemonize is a no-op on Windows."""
        with patch("dropwatch.daemon.service.sys.platform", "win32"):
            with patch("dropwatch.daemon.service.os.fork") as mock_fork:
                daemonize()
                mock_fork.assert_not_called()

    def test_daemonize_parent_exits(self):
        """Test the parent process exits after the first fork."""
        with patch("dropwatch.daemon.service.sys.platform", "linux"):
            with patch("dropwatch.daemon.service.os.fork", return_value=1234):
                with pytest.raises(SystemExit):
                    daemonize(Path("/tmp/dropwatch-test.log"))
