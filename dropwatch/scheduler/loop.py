"""The polling loop that drives scheduled checks.

Every tick loads all active configurations, asks the ScheduleEvaluator
which are due, admits them through the ConcurrencyGovernor and hands each
admitted one to the ExecutionCoordinator as an independent task. The tick
does not wait for those tasks.

Ticks and retention sweeps run on an APScheduler ``AsyncIOScheduler``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Set, Tuple

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dropwatch.clock import Clock
from dropwatch.database.connection import Database
from dropwatch.database.repositories import RepositoryFactory
from dropwatch.domain import Configuration, Execution
from dropwatch.metrics import MetricsCollector
from dropwatch.scheduler.coordinator import CheckResult, ExecutionCoordinator
from dropwatch.scheduler.governor import Admission, ConcurrencyGovernor
from dropwatch.scheduler.schedule_evaluator import ScheduleEvaluator

logger = logging.getLogger(__name__)

TICK_JOB_ID = "dropwatch-tick"
RETENTION_JOB_ID = "dropwatch-retention"
ABANDONED_DETAIL = "Abandoned before reaching a terminal state"


class LoopState(str, Enum):
    """Idle -> Polling -> Dispatching -> Idle, until stopped."""

    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


@dataclass
class TickSummary:
    """What one polling tick did."""

    started_at: datetime
    active: int = 0
    due: int = 0
    admitted: int = 0
    deferred: int = 0
    skipped: int = 0
    initialized: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "active": self.active,
            "due": self.due,
            "admitted": self.admitted,
            "deferred": self.deferred,
            "skipped": self.skipped,
            "initialized": self.initialized,
            "errors": self.errors,
        }


@dataclass
class RetentionPolicy:
    """How long execution history is kept and when unfinished executions count as abandoned."""

    execution_retention: timedelta = timedelta(days=30)
    stale_after: timedelta = timedelta(minutes=120)
    sweep_interval: timedelta = timedelta(minutes=60)


class SchedulerLoop:
    """Recurring scheduler for all active configurations.

    Example:
        loop = SchedulerLoop(db, ScheduleEvaluator(), ConcurrencyGovernor(), coordinator)
        await loop.start()
        ...
        await loop.stop()

    Args:
        db: Database holding configurations
        evaluator: Decides which configurations are due
        governor: Admission control for checks
        coordinator: Runs admitted checks
        clock: Time source
        polling_interval: Seconds between ticks
        drain_timeout: Seconds ``stop`` waits for in-flight checks
        retention: Retention policy; None disables the sweep
        metrics: Receives the active configuration counts; persisted after every tick
    """

    def __init__(
        self,
        db: Database,
        evaluator: ScheduleEvaluator,
        governor: ConcurrencyGovernor,
        coordinator: ExecutionCoordinator,
        clock: Optional[Clock] = None,
        polling_interval: float = 60.0,
        drain_timeout: float = 30.0,
        retention: Optional[RetentionPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._db = db
        self._evaluator = evaluator
        self._governor = governor
        self._coordinator = coordinator
        self._clock = clock or Clock()
        self._polling_interval = polling_interval
        self._drain_timeout = drain_timeout
        self._retention = retention
        self._metrics = metrics
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._state = LoopState.IDLE
        self._tasks: Set[asyncio.Task] = set()
        self._executing: Set[str] = set()
        self._last_tick: Optional[TickSummary] = None
        self._tick_count = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True between ``start`` and ``stop``."""
        return self._scheduler is not None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def last_tick(self) -> Optional[TickSummary]:
        return self._last_tick

    @property
    def tick_count(self) -> int:
        return self._tick_count

    async def start(self) -> None:
        """Start ticking every ``polling_interval`` seconds, beginning now."""
        if self._scheduler is not None:
            logger.warning("Scheduler loop is already running")
            return

        self._state = LoopState.IDLE
        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": max(int(self._polling_interval), 1),
            },
            timezone="UTC",
        )
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._polling_interval, timezone="UTC"),
            id=TICK_JOB_ID,
            name="Poll due configurations",
            next_run_time=datetime.now(timezone.utc),
        )
        if self._retention is not None:
            self._scheduler.add_job(
                self._sweep_job,
                trigger=IntervalTrigger(
                    seconds=self._retention.sweep_interval.total_seconds(), timezone="UTC"
                ),
                id=RETENTION_JOB_ID,
                name="Execution retention sweep",
                next_run_time=datetime.now(timezone.utc),
            )
        self._setup_listeners()
        self._scheduler.start()
        logger.info(
            f"Scheduler loop started (interval {self._polling_interval}s, "
            f"max {self._governor.max_concurrent} concurrent checks)"
        )

    def _setup_listeners(self) -> None:
        if not self._scheduler:
            return

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Scheduler job {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Scheduler job {event.job_id} missed its run time")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    async def stop(self, drain_timeout: Optional[float] = None) -> int:
        """Stop ticking and drain in-flight checks.

        Checks still running after ``drain_timeout`` seconds are cancelled.
        Their executions stay unfinished until the retention sweep fails
        them; the configuration runs again at its next occurrence.

        Returns:
            Number of checks abandoned
        """
        timeout = self._drain_timeout if drain_timeout is None else drain_timeout
        self._state = LoopState.STOPPED

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        pending = set(self._tasks)
        if not pending:
            logger.info("Scheduler loop stopped")
            return 0

        logger.info(f"Draining {len(pending)} in-flight checks (timeout {timeout}s)")
        _, still_running = await asyncio.wait(pending, timeout=timeout)

        if still_running:
            logger.warning(f"Abandoning {len(still_running)} checks after drain timeout")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Scheduler loop stopped")
        return len(still_running)

    async def wait_for_in_flight(self) -> None:
        """Wait until every dispatched check has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def tick(self) -> TickSummary:
        """Run one polling pass.

        A failure while handling one configuration is logged and counted;
        it never stops the pass for the others.
        """
        now = self._clock.now()
        summary = TickSummary(started_at=now)
        if self._state is LoopState.STOPPED:
            return summary

        self._tick_count += 1
        self._state = LoopState.POLLING
        try:
            with self._db.session() as session:
                configurations = RepositoryFactory(session).configurations.list_active()
        except Exception as e:
            logger.error(f"Failed to load active configurations: {e}")
            summary.errors += 1
            self._state = LoopState.IDLE
            self._last_tick = summary
            return summary

        summary.active = len(configurations)
        if self._metrics is not None:
            self._metrics.set_active_configurations(Counter(c.tenant_id for c in configurations))
        self._state = LoopState.DISPATCHING

        for configuration in configurations:
            try:
                self._evaluate(configuration, now, summary)
            except Exception as e:
                summary.errors += 1
                logger.error(f"Failed to schedule configuration {configuration.id}: {e}")

        if self._state is LoopState.DISPATCHING:
            self._state = LoopState.IDLE
        self._last_tick = summary
        if self._metrics is not None:
            self._metrics.persist()

        log = logger.info if summary.admitted or summary.errors else logger.debug
        log(
            f"Tick: {summary.active} active, {summary.due} due, {summary.admitted} admitted, "
            f"{summary.deferred} deferred, {summary.skipped} skipped, {summary.errors} errors"
        )
        return summary

    def _evaluate(self, configuration: Configuration, now: datetime, summary: TickSummary) -> None:
        if configuration.next_due_at is None:
            self._evaluator.initialize(configuration, now)
            if not self._save_schedule(configuration):
                return
            summary.initialized += 1

        if not self._evaluator.is_due(configuration, now):
            return
        summary.due += 1

        admission = self._governor.try_admit(configuration.id)
        if admission is Admission.AT_CAPACITY:
            summary.deferred += 1
            return
        if not admission.admitted:
            summary.skipped += 1
            return

        try:
            scheduled_for = configuration.next_due_at
            self._evaluator.advance(configuration, now)
            if not self._save_schedule(configuration):
                # Disabled or deleted since the tick read it
                self._governor.release(configuration.id)
                summary.skipped += 1
                return
            execution = self._coordinator.create_execution(configuration, scheduled_for)
        except Exception:
            self._governor.release(configuration.id)
            raise

        summary.admitted += 1
        self._dispatch(configuration, execution)

    def _save_schedule(self, configuration: Configuration) -> bool:
        with self._db.session() as session:
            return RepositoryFactory(session).configurations.update_schedule(
                configuration.id,
                configuration.last_evaluated_at,
                configuration.next_due_at,
            )

    def _dispatch(self, configuration: Configuration, execution: Execution) -> None:
        task = asyncio.create_task(
            self._coordinator.execute(configuration, execution),
            name=f"check-{configuration.id}",
        )
        self._tasks.add(task)
        self._executing.add(execution.id)
        task.add_done_callback(
            lambda t, cid=configuration.id, eid=execution.id: self._on_done(cid, eid, t)
        )

    def _on_done(self, configuration_id: str, execution_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._executing.discard(execution_id)
        self._governor.release(configuration_id)
        if task.cancelled():
            logger.warning(f"Check of configuration {configuration_id} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Check of configuration {configuration_id} raised: {task.exception()}")

    async def trigger(self, configuration_id: str) -> Optional[CheckResult]:
        """Check a configuration right now, outside its schedule.

        The same admission rules apply as for scheduled checks. The
        configuration's ``next_due_at`` is left unchanged.

        Returns:
            The check result, or None if the check was not admitted

        Raises:
            KeyError: If the configuration does not exist
        """
        with self._db.session() as session:
            configuration = RepositoryFactory(session).configurations.get_by_id(configuration_id)
        if configuration is None:
            raise KeyError(configuration_id)

        if self._state is LoopState.STOPPED:
            logger.warning(f"Not triggering {configuration_id}: scheduler loop is stopped")
            return None

        admission = self._governor.try_admit(configuration_id)
        if not admission.admitted:
            logger.info(f"Manual check of {configuration_id} not admitted: {admission.value}")
            return None

        execution = None
        try:
            execution = self._coordinator.create_execution(configuration, self._clock.now())
            self._executing.add(execution.id)
            return await self._coordinator.execute(configuration, execution)
        finally:
            if execution is not None:
                self._executing.discard(execution.id)
            self._governor.release(configuration_id)

    async def _sweep_job(self) -> None:
        self.sweep_retention()

    def sweep_retention(self) -> Tuple[int, int]:
        """Fail abandoned executions and delete expired history.

        Executions this loop is still running are never failed, however
        long ago they started.

        Returns:
            (executions failed, executions deleted)
        """
        if self._retention is None:
            return 0, 0

        now = self._clock.now()
        with self._db.session() as session:
            executions = RepositoryFactory(session).executions
            failed = executions.fail_stale(
                before=now - self._retention.stale_after,
                detail=ABANDONED_DETAIL,
                completed_at=now,
                exclude_ids=self._executing,
            )
            deleted = executions.delete_old_executions(now - self._retention.execution_retention)

        if failed or deleted:
            logger.info(f"Retention sweep: {failed} abandoned executions failed, {deleted} deleted")
        return failed, deleted
