"""Scheduling, admission control and check execution."""

from dropwatch.scheduler.coordinator import CheckResult, ExecutionCoordinator
from dropwatch.scheduler.governor import Admission, ConcurrencyGovernor
from dropwatch.scheduler.lease import InMemoryLeaseStore, LeaseStore, SqlLeaseStore
from dropwatch.scheduler.loop import LoopState, RetentionPolicy, SchedulerLoop, TickSummary
from dropwatch.scheduler.schedule_evaluator import (
    ApschedulerCronStrategy,
    CroniterStrategy,
    CronStrategy,
    ScheduleEvaluator,
    describe_next,
    validate_schedule,
)

__all__ = [
    "Admission",
    "ApschedulerCronStrategy",
    "CheckResult",
    "ConcurrencyGovernor",
    "CronStrategy",
    "CroniterStrategy",
    "ExecutionCoordinator",
    "InMemoryLeaseStore",
    "LeaseStore",
    "LoopState",
    "RetentionPolicy",
    "ScheduleEvaluator",
    "SchedulerLoop",
    "SqlLeaseStore",
    "TickSummary",
    "describe_next",
    "validate_schedule",
]
