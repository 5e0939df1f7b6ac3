"""Tests for cron evaluation and due-ness."""

from datetime import datetime, timedelta, timezone

import pytest

from dropwatch.errors import ConfigurationError
from dropwatch.scheduler.schedule_evaluator import (
    ApschedulerCronStrategy,
    CroniterStrategy,
    ScheduleEvaluator,
    describe_next,
    get_zone,
    strategy_for_backend,
    validate_schedule,
)

UTC = timezone.utc


class TestComputeNext:
    """Tests for compute_next()."""

    def test_daily_utc(self):
        """Test the next 02:00 UTC after a given instant."""
        evaluator = ScheduleEvaluator()
        after = datetime(2025, 1, 24, 2, 0, 1, tzinfo=UTC)

        assert evaluator.compute_next("0 2 * * *", "UTC", after) == datetime(2025, 1, 25, 2, 0, tzinfo=UTC)

    def test_strictly_after(self):
        """Test an occurrence equal to the base instant is skipped."""
        evaluator = ScheduleEvaluator()
        after = datetime(2025, 1, 24, 2, 0, tzinfo=UTC)

        assert evaluator.compute_next("0 2 * * *", "UTC", after) == datetime(2025, 1, 25, 2, 0, tzinfo=UTC)

    def test_wall_clock_across_spring_forward(self):
        """Test a daily 09:00 Berlin schedule stays at 09:00 local across DST."""
        evaluator = ScheduleEvaluator()
        after = datetime(2025, 3, 29, 8, 0, tzinfo=UTC)

        assert evaluator.compute_next("0 9 * * *", "Europe/Berlin", after) == datetime(
            2025, 3, 30, 7, 0, tzinfo=UTC
        )

    def test_wall_clock_across_fall_back(self):
        """Test the UTC offset follows the end of DST."""
        evaluator = ScheduleEvaluator()
        after = datetime(2025, 10, 25, 7, 0, tzinfo=UTC)

        assert evaluator.compute_next("0 9 * * *", "Europe/Berlin", after) == datetime(
            2025, 10, 26, 8, 0, tzinfo=UTC
        )

    def test_result_is_aware_utc(self):
        """Test the next instant is returned in UTC."""
        evaluator = ScheduleEvaluator()
        result = evaluator.compute_next("0 2 * * *", "Asia/Tokyo", datetime(2025, 1, 24, tzinfo=UTC))

        assert result.tzinfo is not None
        assert result.utcoffset() == timedelta(0)
        assert result == datetime(2025, 1, 24, 17, 0, tzinfo=UTC)

    def test_six_field_expression(self):
        """Test seconds-first expressions are evaluated by APScheduler."""
        evaluator = ScheduleEvaluator()
        after = datetime(2025, 1, 24, 2, 0, 0, tzinfo=UTC)

        assert isinstance(evaluator.strategy_for("30 0 2 * * *"), ApschedulerCronStrategy)
        assert evaluator.compute_next("30 0 2 * * *", "UTC", after) == datetime(
            2025, 1, 24, 2, 0, 30, tzinfo=UTC
        )

    def test_weekday_numbering_matches_crontab(self):
        """Test day-of-week 1-5 means Monday to Friday with either strategy."""
        friday = datetime(2025, 1, 24, 12, 0, tzinfo=UTC)
        expected = datetime(2025, 1, 27, 6, 30, tzinfo=UTC)

        for strategy in (CroniterStrategy(), ApschedulerCronStrategy()):
            evaluator = ScheduleEvaluator(strategy)
            assert evaluator.compute_next("30 6 * * 1-5", "UTC", friday) == expected

    def test_sunday_as_zero_and_seven(self):
        """Test both 0 and 7 mean Sunday under APScheduler."""
        evaluator = ScheduleEvaluator(ApschedulerCronStrategy())
        friday = datetime(2025, 1, 24, 12, 0, tzinfo=UTC)
        sunday = datetime(2025, 1, 26, 0, 0, tzinfo=UTC)

        assert evaluator.compute_next("0 0 * * 0", "UTC", friday) == sunday
        assert evaluator.compute_next("0 0 * * 7", "UTC", friday) == sunday

    def test_invalid_expression(self):
        """Test an invalid expression raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ScheduleEvaluator().compute_next("61 * * * *", "UTC", datetime(2025, 1, 1, tzinfo=UTC))


class TestValidate:
    """Tests for expression and timezone validation."""

    def test_valid(self):
        """Test common expressions validate."""
        evaluator = ScheduleEvaluator()
        for expression in ("0 2 * * *", "*/15 * * * *", "@daily", "0 0 2 * * *"):
            evaluator.validate(expression, "UTC")

    def test_croniter_rejects_six_fields(self):
        """Test the croniter strategy only accepts crontab syntax."""
        with pytest.raises(ValueError):
            CroniterStrategy().validate("0 0 2 * * *")

    def test_unknown_zone(self):
        """Test an unknown timezone is rejected."""
        with pytest.raises(ConfigurationError, match="Unknown timezone"):
            get_zone("Nowhere/Special")

    def test_validate_schedule_messages(self):
        """Test validate_schedule returns None or an error message."""
        assert validate_schedule("0 2 * * *", "Europe/Berlin") is None
        assert "Invalid cron expression" in validate_schedule("every day", "UTC")
        assert "Unknown timezone" in validate_schedule("0 2 * * *", "Nowhere/Special")


class TestDueness:
    """Tests for is_due(), initialize() and advance()."""

    def test_not_due_without_next(self, make_configuration):
        """Test a configuration without next_due_at is never due."""
        configuration = make_configuration()
        assert ScheduleEvaluator().is_due(configuration, datetime(2030, 1, 1, tzinfo=UTC)) is False

    def test_due_at_and_after_next(self, make_configuration):
        """Test due-ness flips exactly at next_due_at."""
        next_due = datetime(2025, 1, 24, 2, 0, tzinfo=UTC)
        configuration = make_configuration(next_due_at=next_due)
        evaluator = ScheduleEvaluator()

        assert evaluator.is_due(configuration, next_due - timedelta(seconds=1)) is False
        assert evaluator.is_due(configuration, next_due) is True
        assert evaluator.is_due(configuration, next_due + timedelta(hours=5)) is True

    def test_initialize_from_now(self, make_configuration):
        """Test a fresh configuration is scheduled from now."""
        configuration = make_configuration()
        now = datetime(2025, 1, 24, 1, 0, tzinfo=UTC)

        assert ScheduleEvaluator().initialize(configuration, now) is True
        assert configuration.next_due_at == datetime(2025, 1, 24, 2, 0, tzinfo=UTC)

    def test_initialize_from_last_evaluation(self, make_configuration):
        """Test a missed occurrence after the last evaluation is still due."""
        configuration = make_configuration(last_evaluated_at=datetime(2025, 1, 20, 2, 0, 1, tzinfo=UTC))
        now = datetime(2025, 1, 24, 1, 0, tzinfo=UTC)

        ScheduleEvaluator().initialize(configuration, now)

        assert configuration.next_due_at == datetime(2025, 1, 21, 2, 0, tzinfo=UTC)

    def test_initialize_keeps_existing(self, make_configuration):
        """Test initialize leaves a scheduled configuration alone."""
        due = datetime(2025, 1, 24, 2, 0, tzinfo=UTC)
        configuration = make_configuration(next_due_at=due)

        assert ScheduleEvaluator().initialize(configuration, datetime(2025, 1, 1, tzinfo=UTC)) is False
        assert configuration.next_due_at == due

    def test_advance(self, make_configuration):
        """Test advancing records the evaluation and the following occurrence."""
        configuration = make_configuration(next_due_at=datetime(2025, 1, 24, 2, 0, tzinfo=UTC))
        now = datetime(2025, 1, 24, 2, 0, 1, tzinfo=UTC)

        ScheduleEvaluator().advance(configuration, now)

        assert configuration.last_evaluated_at == now
        assert configuration.next_due_at == datetime(2025, 1, 25, 2, 0, tzinfo=UTC)

    def test_advance_skips_missed_occurrences(self, make_configuration):
        """Test a late evaluation schedules the next future occurrence only."""
        configuration = make_configuration(next_due_at=datetime(2025, 1, 20, 2, 0, tzinfo=UTC))
        now = datetime(2025, 1, 24, 3, 0, tzinfo=UTC)

        ScheduleEvaluator().advance(configuration, now)

        assert configuration.next_due_at == datetime(2025, 1, 25, 2, 0, tzinfo=UTC)


class TestDescribeNext:
    """Tests for describe_next()."""

    @pytest.mark.parametrize("offset, expected", [
        (None, "Not scheduled"),
        (timedelta(seconds=-5), "Due now"),
        (timedelta(seconds=30), "In less than a minute"),
        (timedelta(minutes=5), "In 5 minutes"),
        (timedelta(hours=3, minutes=10), "In 3 hours"),
        (timedelta(days=2, hours=1), "In 2 days"),
    ])
    def test_descriptions(self, offset, expected):
        """Test each distance bucket."""
        now = datetime(2025, 1, 24, tzinfo=UTC)
        next_due = now + offset if offset is not None else None
        assert describe_next(next_due, now) == expected


class TestStrategyForBackend:
    """Tests for strategy_for_backend()."""

    def test_backends(self):
        """Test each configured backend name."""
        assert isinstance(strategy_for_backend("croniter"), CroniterStrategy)
        assert isinstance(strategy_for_backend("apscheduler"), ApschedulerCronStrategy)
        assert strategy_for_backend("auto") is None

    def test_unknown_backend(self):
        """Test an unknown backend is a configuration error."""
        with pytest.raises(ConfigurationError):
            strategy_for_backend("quartz")
