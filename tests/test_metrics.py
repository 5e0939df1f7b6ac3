"""Tests for the metrics collector."""

import json
from datetime import datetime, timezone

from dropwatch.clock import FixedClock
from dropwatch.metrics import DurationHistogram, MetricsCollector, read_snapshot

NOW = datetime(2025, 1, 24, 2, 0, tzinfo=timezone.utc)


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_counts_per_protocol_and_tenant(self):
        """Test checks, failures and discoveries are split by protocol and tenant."""
        collector = MetricsCollector(clock=FixedClock(NOW))

        collector.record_check("acme", "FTP", True, 0.2)
        collector.record_check("acme", "HTTPS", False, 3.0)
        collector.record_check("globex", "FTP", True)
        collector.record_files_discovered("acme", "FTP", 2)
        collector.record_files_discovered("globex", "FTP", 0)

        snapshot = collector.snapshot()
        assert snapshot.taken_at == NOW
        assert snapshot.checks_executed == 3
        assert snapshot.failures == 1
        assert snapshot.checks_by_protocol == {"FTP": 2, "HTTPS": 1}
        assert snapshot.failures_by_protocol == {"HTTPS": 1}
        assert snapshot.checks_by_tenant == {"acme": 2, "globex": 1}
        assert snapshot.files_discovered_by_tenant == {"acme": 2}
        assert snapshot.check_duration["count"] == 2

    def test_active_configurations_replaced(self):
        """Test each update replaces the previous per-tenant counts."""
        collector = MetricsCollector()

        collector.set_active_configurations({"acme": 3, "globex": 1})
        collector.set_active_configurations({"acme": 2})

        assert collector.snapshot().active_configurations_by_tenant == {"acme": 2}

    def test_persist_and_read(self, tmp_path):
        """Test a persisted snapshot reads back as a dict."""
        path = tmp_path / "data" / "metrics.json"
        collector = MetricsCollector(snapshot_path=path, clock=FixedClock(NOW))
        collector.record_check("acme", "ObjectStorage", True, 1.5)

        collector.persist()

        data = read_snapshot(path)
        assert data["checks_executed"] == 1
        assert data["taken_at"] == NOW.isoformat()
        assert not path.with_suffix(".tmp").exists()

    def test_persist_without_path_is_noop(self, tmp_path):
        """Test an in-memory collector writes nothing."""
        MetricsCollector().persist()

        assert list(tmp_path.iterdir()) == []

    def test_read_missing_or_corrupt(self, tmp_path):
        """Test unreadable snapshots are reported as absent."""
        corrupt = tmp_path / "metrics.json"
        corrupt.write_text("{not json")

        assert read_snapshot(tmp_path / "missing.json") is None
        assert read_snapshot(corrupt) is None


class TestDurationHistogram:
    """Tests for DurationHistogram."""

    def test_buckets_are_cumulative(self):
        """Test an observation counts in every bucket at or above it."""
        histogram = DurationHistogram(buckets=(1.0, 5.0))
        histogram.observe(0.5)
        histogram.observe(3.0)
        histogram.observe(9.0)

        data = histogram.to_dict()
        assert data["buckets"] == {"le_1": 1, "le_5": 2, "le_inf": 3}
        assert data["count"] == 3
        assert data["sum_seconds"] == 12.5
        assert json.dumps(data)
