"""Main daemon service for Dropwatch.

This module provides the core daemon functionality including:
- Wiring the scheduler loop to its collaborators from configuration
- Service lifecycle management (start/stop with graceful drain)
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import logging
import os
import signal
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from dropwatch.clock import Clock
from dropwatch.config import DropwatchConfig
from dropwatch.credentials import EnvironmentSecretResolver, SecretResolver
from dropwatch.database.connection import Database
from dropwatch.metrics import METRICS_FILE_NAME, MetricsCollector
from dropwatch.notifier import LoggingNotifier, Notifier, WebhookNotifier
from dropwatch.protocols.registry import AdapterRegistry
from dropwatch.scheduler.coordinator import ExecutionCoordinator
from dropwatch.scheduler.governor import ConcurrencyGovernor
from dropwatch.scheduler.lease import SqlLeaseStore
from dropwatch.scheduler.loop import RetentionPolicy, SchedulerLoop
from dropwatch.scheduler.schedule_evaluator import ScheduleEvaluator, strategy_for_backend

logger = logging.getLogger(__name__)


def create_notifier(config: DropwatchConfig) -> Notifier:
    """Build the notifier selected in configuration."""
    if config.notifier.kind == "webhook" and config.notifier.webhook_url:
        return WebhookNotifier(
            config.notifier.webhook_url,
            timeout=config.notifier.webhook_timeout_seconds,
        )
    return LoggingNotifier()


@dataclass
class Components:
    """Everything a scheduler process needs, built from one configuration."""

    db: Database
    notifier: Notifier
    evaluator: ScheduleEvaluator
    governor: ConcurrencyGovernor
    coordinator: ExecutionCoordinator
    loop: SchedulerLoop
    metrics: Optional[MetricsCollector] = None
    executor: Optional[ThreadPoolExecutor] = None

    def shutdown_executor(self) -> None:
        """Stop the adapter worker threads once no check is running."""
        if self.executor is not None:
            self.executor.shutdown(wait=False, cancel_futures=True)
            self.executor = None


def build_components(
    config: DropwatchConfig,
    db: Optional[Database] = None,
    clock: Optional[Clock] = None,
    secret_resolver: Optional[SecretResolver] = None,
    notifier: Optional[Notifier] = None,
    adapters: Optional[AdapterRegistry] = None,
) -> Components:
    """Construct the scheduler and its collaborators.

    Any collaborator passed in is used as is; the rest are built from
    ``config``. Default adapters share one worker pool sized to
    ``scheduler.max_concurrent_checks`` for their blocking client calls.
    """
    clock = clock or Clock()
    if db is None:
        db = Database(config.database_url)
        db.create_tables()

    scheduler = config.scheduler
    secret_resolver = secret_resolver or EnvironmentSecretResolver(config.secrets.env_prefix)
    executor = None
    if adapters is None:
        executor = ThreadPoolExecutor(
            max_workers=scheduler.max_concurrent_checks,
            thread_name_prefix="dropwatch-adapter",
        )
        adapters = AdapterRegistry.default(secret_resolver, executor=executor)
    notifier = notifier or create_notifier(config)
    metrics = MetricsCollector(snapshot_path=config.data_dir / METRICS_FILE_NAME, clock=clock)

    lease_store = None
    if scheduler.enable_distributed_locking:
        lease_store = SqlLeaseStore(db, owner=config.instance_id or None, clock=clock)
        logger.info(f"Distributed locking enabled (lease owner {lease_store.owner})")

    evaluator = ScheduleEvaluator(strategy_for_backend(scheduler.cron_backend))
    governor = ConcurrencyGovernor(
        max_concurrent=scheduler.max_concurrent_checks,
        lease_store=lease_store,
        lease_ttl=timedelta(seconds=scheduler.lease_ttl_seconds),
    )
    coordinator = ExecutionCoordinator(
        db,
        adapters,
        notifier,
        clock=clock,
        adapter_timeout=scheduler.adapter_timeout_seconds,
        retry_attempts=scheduler.retry_attempts,
        retry_delay=scheduler.retry_delay_seconds,
        metrics=metrics,
    )
    loop = SchedulerLoop(
        db,
        evaluator,
        governor,
        coordinator,
        clock=clock,
        metrics=metrics,
        polling_interval=scheduler.polling_interval_seconds,
        drain_timeout=scheduler.drain_timeout_seconds,
        retention=RetentionPolicy(
            execution_retention=timedelta(days=config.retention.execution_retention_days),
            stale_after=timedelta(minutes=config.retention.stale_running_minutes),
            sweep_interval=timedelta(minutes=config.retention.sweep_interval_minutes),
        ),
    )
    return Components(db, notifier, evaluator, governor, coordinator, loop, metrics, executor)


class DropwatchDaemon:
    """Main daemon service for Dropwatch.

    The DropwatchDaemon owns the database, notifier and scheduler loop
    for one process and manages their lifecycle.

    Example:
        daemon = DropwatchDaemon(config)

        # Start daemon
        await daemon.start()

        # Run until shutdown signal
        await daemon.run_until_shutdown()

        # Stop daemon
        await daemon.stop()
    """

    def __init__(
        self,
        config: DropwatchConfig,
        components: Optional[Components] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Dropwatch configuration
            components: Pre-built components (built from config on start if omitted)
        """
        self._config = config
        self._components = components
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the scheduler loop.

        Raises:
            RuntimeError: If the daemon is already running
        """
        if self._running:
            raise RuntimeError("Daemon is already running")

        logger.info("Starting Dropwatch daemon...")

        if self._components is None:
            self._components = build_components(self._config)

        await self._components.loop.start()

        self._running = True
        logger.info("Dropwatch daemon started successfully")

    async def stop(self) -> None:
        """Stop the daemon, draining in-flight checks first."""
        logger.info("Stopping Dropwatch daemon...")

        self._running = False
        if self._components is None:
            return

        try:
            abandoned = await self._components.loop.stop()
            if abandoned:
                logger.warning(f"{abandoned} checks abandoned at shutdown")
        except Exception as e:
            logger.warning(f"Error stopping scheduler loop: {e}")

        try:
            await self._components.notifier.close()
        except Exception as e:
            logger.warning(f"Error closing notifier: {e}")

        self._components.shutdown_executor()
        self._components.db.dispose()
        logger.info("Dropwatch daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Run daemon until shutdown signal received."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def loop(self) -> Optional[SchedulerLoop]:
        """The scheduler loop, or None if not started."""
        return self._components.loop if self._components else None


async def run_daemon(config: DropwatchConfig, options: Optional[Dict[str, Any]] = None) -> None:
    """Run the Dropwatch daemon with signal handling.

    Args:
        config: Dropwatch configuration
        options: Daemon options including:
            - polling_interval: Override scheduler.polling_interval_seconds
            - max_concurrent: Override scheduler.max_concurrent_checks

    Example:
        await run_daemon(config, {"max_concurrent": 50})
    """
    options = options or {}
    if options.get("polling_interval"):
        config.scheduler.polling_interval_seconds = options["polling_interval"]
    if options.get("max_concurrent"):
        config.scheduler.max_concurrent_checks = options["max_concurrent"]

    daemon = DropwatchDaemon(config)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Fork process to run as daemon.

    Forks twice, detaches from the terminal and redirects the standard
    file descriptors to ``log_file`` (or /dev/null).

    Note:
        This function only works on Unix-like systems. On Windows,
        it returns without doing anything.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    os.setsid()

    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    target = log_file or Path(os.devnull)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a+") as f:
        os.dup2(f.fileno(), sys.stdout.fileno())
        os.dup2(f.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
