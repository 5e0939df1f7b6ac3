"""Execution of a single configuration check.

A check resolves the configuration's date tokens for the scheduled instant,
asks the protocol adapter for matching files, records each file it has not
seen on the current discovery date, and notifies downstream consumers.

Adapter failures end the check as a Failed execution carrying the error
category; they are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from dropwatch.clock import Clock, ensure_utc
from dropwatch.database.connection import Database
from dropwatch.database.repositories import RepositoryFactory
from dropwatch.domain import (
    Configuration,
    DiscoveredFile,
    DiscoveryNotification,
    Execution,
    ExecutionOutcome,
    ExecutionStatus,
    NotificationStatus,
    OutcomeNotification,
    RemoteFile,
)
from dropwatch.errors import AdapterError, ConnectionTimeout, ProtocolError
from dropwatch.metrics import MetricsCollector
from dropwatch.notifier import Notifier
from dropwatch.protocols.registry import AdapterRegistry
from dropwatch.scheduler.schedule_evaluator import get_zone
from dropwatch.tokens import TokenResolver

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Final execution state plus the discoveries it created."""

    execution: Execution
    discoveries: List[DiscoveredFile] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.execution.status is ExecutionStatus.COMPLETED


class ExecutionCoordinator:
    """Runs configuration checks and records their outcome.

    Args:
        db: Database holding executions and discoveries
        adapters: Adapter per protocol
        notifier: Receiver of discovery and outcome notifications
        clock: Time source
        resolver: Token resolver for path and name patterns
        adapter_timeout: Seconds allowed for one adapter call
        retry_attempts: Extra attempts after a ConnectionTimeout within one check
        retry_delay: Seconds to wait before such an extra attempt
        metrics: Collector counting finished checks and new files
    """

    def __init__(
        self,
        db: Database,
        adapters: AdapterRegistry,
        notifier: Notifier,
        clock: Optional[Clock] = None,
        resolver: Optional[TokenResolver] = None,
        adapter_timeout: float = 30.0,
        retry_attempts: int = 0,
        retry_delay: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._db = db
        self._adapters = adapters
        self._notifier = notifier
        self._clock = clock or Clock()
        self._resolver = resolver or TokenResolver()
        self._adapter_timeout = adapter_timeout
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._metrics = metrics or MetricsCollector(clock=self._clock)

    def create_execution(self, configuration: Configuration, scheduled_for: datetime) -> Execution:
        """Record a Pending execution for an admitted configuration."""
        execution = Execution(
            configuration_id=configuration.id,
            tenant_id=configuration.tenant_id,
            scheduled_for=ensure_utc(scheduled_for),
            created_at=self._clock.now(),
        )
        with self._db.session() as session:
            RepositoryFactory(session).executions.create(execution)
        return execution

    async def run(self, configuration: Configuration, scheduled_for: Optional[datetime] = None) -> CheckResult:
        """Create an execution and run the check immediately."""
        execution = self.create_execution(configuration, scheduled_for or self._clock.now())
        return await self.execute(configuration, execution)

    async def execute(self, configuration: Configuration, execution: Execution) -> CheckResult:
        """Run the check for a Pending execution.

        Never raises except for cancellation; every failure is recorded on
        the execution.
        """
        try:
            return await self._execute(configuration, execution)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Check of configuration {configuration.id} failed unexpectedly")
            return await self._finish_failed(
                configuration,
                execution,
                ProtocolError("Unexpected error during check", f"{type(e).__name__}: {e}"),
                started=None,
                retry_count=0,
            )

    async def _execute(self, configuration: Configuration, execution: Execution) -> CheckResult:
        started_at = self._clock.now()
        started = time.monotonic()

        path, name = self._resolver.resolve_pair(
            configuration.path_pattern,
            configuration.name_pattern,
            execution.scheduled_for,
            configuration.timezone,
        )

        with self._db.session() as session:
            RepositoryFactory(session).executions.transition(
                execution.id,
                ExecutionStatus.RUNNING,
                ExecutionOutcome(started_at=started_at, resolved_path=path, resolved_name=name),
            )

        logger.info(
            f"Checking configuration {configuration.id} ({configuration.protocol.value}) "
            f"path={path!r} name={name!r}"
        )

        retry_count = 0
        while True:
            try:
                files = await self._list(configuration, path, name)
                break
            except ConnectionTimeout as e:
                if retry_count >= self._retry_attempts:
                    return await self._finish_failed(configuration, execution, e, started, retry_count)
                retry_count += 1
                logger.warning(
                    f"Configuration {configuration.id} timed out, "
                    f"retry {retry_count}/{self._retry_attempts} in {self._retry_delay}s"
                )
                await asyncio.sleep(self._retry_delay)
            except AdapterError as e:
                return await self._finish_failed(configuration, execution, e, started, retry_count)

        return await self._finish_completed(configuration, execution, files, started, retry_count)

    async def _list(self, configuration: Configuration, path: str, name: str) -> List[RemoteFile]:
        adapter = self._adapters.get(configuration.protocol)
        call = adapter.list_matching(
            path,
            name,
            configuration.settings,
            self._adapter_timeout,
            configuration.file_extension,
        )
        try:
            if adapter.blocking:
                # Socket timeouts bound the call once a worker thread picks it up
                return await call
            return await asyncio.wait_for(call, timeout=self._adapter_timeout)
        except AdapterError:
            raise
        except asyncio.TimeoutError as e:
            raise ConnectionTimeout(
                f"Adapter call timed out after {self._adapter_timeout}s"
            ) from e
        except Exception as e:
            raise ProtocolError("Adapter raised an uncategorized error", f"{type(e).__name__}: {e}") from e

    async def _finish_completed(
        self,
        configuration: Configuration,
        execution: Execution,
        files: List[RemoteFile],
        started: float,
        retry_count: int,
    ) -> CheckResult:
        now = self._clock.now()
        discovery_date = now.astimezone(get_zone(configuration.timezone)).date()

        duration_ms = self._elapsed_ms(started)
        created: List[DiscoveredFile] = []
        with self._db.session() as session:
            repos = RepositoryFactory(session)
            for remote in files:
                discovery = DiscoveredFile(
                    tenant_id=configuration.tenant_id,
                    configuration_id=configuration.id,
                    url=remote.url,
                    discovery_date=discovery_date,
                    discovered_at=now,
                    size=remote.size,
                    last_modified_remote=remote.last_modified_remote,
                    execution_id=execution.id,
                )
                if repos.discoveries.try_create(discovery):
                    created.append(discovery)
                else:
                    logger.debug(f"Already discovered today: {remote.url}")

            final = repos.executions.transition(
                execution.id,
                ExecutionStatus.COMPLETED,
                ExecutionOutcome(
                    completed_at=now,
                    files_found=len(created),
                    duration_ms=duration_ms,
                    retry_count=retry_count,
                ),
            )

        logger.info(
            f"Configuration {configuration.id} completed: {len(files)} matching, "
            f"{len(created)} new"
        )
        protocol = configuration.protocol.value
        self._metrics.record_check(configuration.tenant_id, protocol, True, duration_ms / 1000)
        self._metrics.record_files_discovered(configuration.tenant_id, protocol, len(created))

        await self._notify_discoveries(created)
        await self._notify_outcome(final)
        return CheckResult(execution=final, discoveries=created)

    async def _finish_failed(
        self,
        configuration: Configuration,
        execution: Execution,
        error: AdapterError,
        started: Optional[float],
        retry_count: int,
    ) -> CheckResult:
        logger.error(
            f"Configuration {configuration.id} failed: {error.category.value}: {error}"
        )
        outcome = ExecutionOutcome(
            completed_at=self._clock.now(),
            error_category=error.category,
            error_detail=str(error),
            duration_ms=self._elapsed_ms(started) if started is not None else None,
            retry_count=retry_count,
        )
        try:
            with self._db.session() as session:
                final = RepositoryFactory(session).executions.transition(
                    execution.id, ExecutionStatus.FAILED, outcome
                )
        except Exception as e:
            logger.error(f"Could not record failure of execution {execution.id}: {e}")
            execution.status = ExecutionStatus.FAILED
            execution.error_category = error.category
            execution.error_detail = str(error)
            final = execution

        self._metrics.record_check(
            configuration.tenant_id,
            configuration.protocol.value,
            False,
            outcome.duration_ms / 1000 if outcome.duration_ms is not None else None,
        )
        await self._notify_outcome(final)
        return CheckResult(execution=final)

    async def _notify_discoveries(self, discoveries: List[DiscoveredFile]) -> None:
        """Publish each new discovery and record whether it was delivered.

        Runs after the execution is Completed, so failures here are logged
        and never change the execution's outcome.
        """
        if not discoveries:
            return

        for discovery in discoveries:
            try:
                await self._notifier.publish_discovery(DiscoveryNotification.from_discovery(discovery))
                discovery.notification_status = NotificationStatus.SENT
            except Exception as e:
                logger.warning(f"Discovery notification for {discovery.url} failed: {e}")
                discovery.notification_status = NotificationStatus.FAILED

        try:
            with self._db.session() as session:
                repo = RepositoryFactory(session).discoveries
                for discovery in discoveries:
                    repo.set_notification_status(discovery.id, discovery.notification_status)
        except Exception as e:
            logger.error(f"Could not record notification status of {len(discoveries)} discoveries: {e}")

    async def _notify_outcome(self, execution: Execution) -> None:
        try:
            await self._notifier.publish_outcome(OutcomeNotification.from_execution(execution))
        except Exception as e:
            logger.warning(f"Outcome notification for execution {execution.id} failed: {e}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
