"""Timezone-aware cron evaluation.

Cron expressions are evaluated on the configuration's local wall clock,
so "daily at 02:00" in Europe/Berlin fires at 02:00 Berlin time on both
sides of a DST change. All instants handed in and out are aware UTC.

Two interchangeable strategies compute the next occurrence:

- ``CroniterStrategy``: standard 5-field crontab syntax and ``@daily``-style
  aliases, evaluated with croniter.
- ``ApschedulerCronStrategy``: 5 fields, or 6 fields with a leading seconds
  field, evaluated with an APScheduler ``CronTrigger``.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from croniter import croniter

from dropwatch.clock import ensure_utc
from dropwatch.domain import Configuration
from dropwatch.errors import ConfigurationError

logger = logging.getLogger(__name__)

_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_MAX_CANDIDATES = 1000


def get_zone(name: str) -> ZoneInfo:
    """Look up an IANA timezone.

    Raises:
        ConfigurationError: If the name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name}") from e


class CronStrategy(ABC):
    """Computes the next occurrence of a cron expression."""

    @abstractmethod
    def validate(self, expression: str) -> None:
        """Raise ValueError if ``expression`` is not understood."""

    @abstractmethod
    def next_after(self, expression: str, zone: ZoneInfo, after: datetime) -> datetime:
        """Return the first occurrence strictly after ``after`` (aware UTC)."""


class CroniterStrategy(CronStrategy):
    """Evaluates crontab expressions with croniter on local wall-clock time."""

    def validate(self, expression: str) -> None:
        if len(expression.split()) == 6 or not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression}")

    def next_after(self, expression: str, zone: ZoneInfo, after: datetime) -> datetime:
        after = ensure_utc(after)
        wall_clock = after.astimezone(zone).replace(tzinfo=None)
        itr = croniter(expression, wall_clock)

        # Wall-clock candidates inside a DST fold or gap can map to an instant
        # at or before ``after``; skip those.
        for _ in range(_MAX_CANDIDATES):
            candidate = itr.get_next(datetime)
            instant = candidate.replace(tzinfo=zone).astimezone(timezone.utc)
            if instant > after:
                return instant
        raise ValueError(f"No occurrence found for cron expression: {expression}")


def _crontab_weekdays(field: str) -> str:
    """Rewrite a crontab day-of-week field (0/7 = Sunday) as APScheduler day names."""
    if field in ("*", "?"):
        return "*"
    if re.search("[a-zA-Z]", field):
        return field.lower()

    days = set()
    for part in field.split(","):
        span, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if span == "*":
            start, end = 0, 6
        elif "-" in span:
            start_text, end_text = span.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = int(span)
            end = 6 if step_text else start
        if not (0 <= start <= 7 and 0 <= end <= 7) or step < 1:
            raise ValueError(f"Invalid day-of-week field: {field}")
        for day in range(start, end + 1, step):
            days.add(day % 7)
    return ",".join(_WEEKDAY_NAMES[d] for d in sorted(days))


class ApschedulerCronStrategy(CronStrategy):
    """Evaluates 5- or 6-field (seconds first) cron expressions with APScheduler."""

    def _parse_cron_trigger(self, expression: str, zone: ZoneInfo) -> CronTrigger:
        """Parse cron expression into APScheduler CronTrigger.

        Supports standard 5-part cron (minute hour day month day_of_week)
        and 6-part cron with seconds (second minute hour day month day_of_week).

        Raises:
            ValueError: If cron expression is invalid
        """
        parts = expression.split()

        if len(parts) == 5:
            minute, hour, day, month, day_of_week = parts
            second = "0"
        elif len(parts) == 6:
            second, minute, hour, day, month, day_of_week = parts
        else:
            raise ValueError(f"Invalid cron expression: {expression}")

        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day.replace("?", "*"),
            month=month,
            day_of_week=_crontab_weekdays(day_of_week),
            timezone=zone,
        )

    def validate(self, expression: str) -> None:
        self._parse_cron_trigger(expression, ZoneInfo("UTC"))

    def next_after(self, expression: str, zone: ZoneInfo, after: datetime) -> datetime:
        trigger = self._parse_cron_trigger(expression, zone)
        # CronTrigger returns the first fire time at or after ``now``
        now = ensure_utc(after) + timedelta(microseconds=1)
        next_fire = trigger.get_next_fire_time(None, now)
        if next_fire is None:
            raise ValueError(f"No occurrence found for cron expression: {expression}")
        return next_fire.astimezone(timezone.utc)


class ScheduleEvaluator:
    """Decides when configurations are due and moves their schedule forward.

    Args:
        strategy: Cron strategy to use for every expression. When omitted,
            6-field expressions use ``ApschedulerCronStrategy`` and everything
            else uses ``CroniterStrategy``.
    """

    def __init__(self, strategy: Optional[CronStrategy] = None) -> None:
        self._strategy = strategy
        self._croniter = CroniterStrategy()
        self._apscheduler = ApschedulerCronStrategy()

    def strategy_for(self, expression: str) -> CronStrategy:
        if self._strategy is not None:
            return self._strategy
        if len(expression.split()) == 6:
            return self._apscheduler
        return self._croniter

    def validate(self, expression: str, tz: str = "UTC") -> None:
        """Check a schedule expression and timezone.

        Raises:
            ConfigurationError: If either is invalid
        """
        get_zone(tz)
        try:
            self.strategy_for(expression).validate(expression)
        except (ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}") from e

    def compute_next(self, expression: str, tz: str, after: datetime) -> datetime:
        """Return the first occurrence of ``expression`` in ``tz`` strictly after ``after``.

        Raises:
            ConfigurationError: If the expression or timezone is invalid
        """
        zone = get_zone(tz)
        try:
            return self.strategy_for(expression).next_after(expression, zone, after)
        except (ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}") from e

    def is_due(self, configuration: Configuration, now: datetime) -> bool:
        """A configuration is due once ``now`` reaches its ``next_due_at``."""
        if configuration.next_due_at is None:
            return False
        return ensure_utc(now) >= ensure_utc(configuration.next_due_at)

    def initialize(self, configuration: Configuration, now: datetime) -> bool:
        """Fill in ``next_due_at`` for a configuration that has none.

        The next occurrence is computed from ``last_evaluated_at`` when the
        configuration has been evaluated before, otherwise from ``now``.

        Returns:
            True if the configuration was changed
        """
        if configuration.next_due_at is not None:
            return False
        base = configuration.last_evaluated_at or ensure_utc(now)
        configuration.next_due_at = self.compute_next(
            configuration.schedule_expression, configuration.timezone, base
        )
        return True

    def advance(self, configuration: Configuration, now: datetime) -> Configuration:
        """Record an evaluation at ``now`` and schedule the next occurrence after it."""
        now = ensure_utc(now)
        configuration.last_evaluated_at = now
        configuration.next_due_at = self.compute_next(
            configuration.schedule_expression, configuration.timezone, now
        )
        logger.debug(
            f"Configuration {configuration.id} evaluated at {now.isoformat()}, "
            f"next due {configuration.next_due_at.isoformat()}"
        )
        return configuration


def describe_next(next_due_at: Optional[datetime], now: datetime) -> str:
    """Human-readable distance to the next due instant."""
    if next_due_at is None:
        return "Not scheduled"
    delta = ensure_utc(next_due_at) - ensure_utc(now)
    seconds = delta.total_seconds()
    if seconds <= 0:
        return "Due now"
    if seconds < 60:
        return "In less than a minute"
    if seconds < 3600:
        return f"In {int(seconds // 60)} minutes"
    if seconds < 86400:
        return f"In {int(seconds // 3600)} hours"
    return f"In {int(seconds // 86400)} days"


def strategy_for_backend(backend: str) -> Optional[CronStrategy]:
    """Map a ``cron_backend`` setting to a strategy; "auto" picks per expression."""
    if backend == "croniter":
        return CroniterStrategy()
    if backend == "apscheduler":
        return ApschedulerCronStrategy()
    if backend == "auto":
        return None
    raise ConfigurationError(f"Unknown cron backend: {backend}")


def validate_schedule(expression: str, tz: str = "UTC") -> Optional[str]:
    """Return an error message for an invalid schedule, or None if it is valid."""
    try:
        ScheduleEvaluator().validate(expression, tz)
    except ConfigurationError as e:
        return str(e)
    return None
