"""Operational counters for the scheduler process.

The coordinator records every finished check and the scheduler loop the
number of active configurations per tenant. ``snapshot`` returns the
current values; a daemon persists them to ``metrics.json`` in the data
directory after every tick so ``dropwatch run status`` can report them.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dropwatch.clock import Clock

logger = logging.getLogger(__name__)

METRICS_FILE_NAME = "metrics.json"

# Upper bounds in seconds of the check duration buckets
DURATION_BUCKETS: Tuple[float, ...] = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)


@dataclass
class DurationHistogram:
    """Cumulative histogram of check durations."""

    buckets: Tuple[float, ...] = DURATION_BUCKETS
    counts: Dict[str, int] = field(default_factory=dict)
    count: int = 0
    total_seconds: float = 0.0

    def observe(self, seconds: float) -> None:
        self.count += 1
        self.total_seconds += seconds
        for bound in self.buckets:
            if seconds <= bound:
                key = f"le_{bound:g}"
                self.counts[key] = self.counts.get(key, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        buckets = {f"le_{bound:g}": self.counts.get(f"le_{bound:g}", 0) for bound in self.buckets}
        buckets["le_inf"] = self.count
        return {
            "buckets": buckets,
            "count": self.count,
            "sum_seconds": round(self.total_seconds, 3),
        }


@dataclass
class MetricsSnapshot:
    """Point-in-time copy of the collected metrics."""

    taken_at: datetime
    checks_by_protocol: Dict[str, int]
    failures_by_protocol: Dict[str, int]
    checks_by_tenant: Dict[str, int]
    files_discovered_by_tenant: Dict[str, int]
    files_discovered_by_protocol: Dict[str, int]
    active_configurations_by_tenant: Dict[str, int]
    check_duration: Dict[str, Any]

    @property
    def checks_executed(self) -> int:
        return sum(self.checks_by_protocol.values())

    @property
    def failures(self) -> int:
        return sum(self.failures_by_protocol.values())

    @property
    def files_discovered(self) -> int:
        return sum(self.files_discovered_by_protocol.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taken_at": self.taken_at.isoformat(),
            "checks_executed": self.checks_executed,
            "failures": self.failures,
            "files_discovered": self.files_discovered,
            "checks_by_protocol": self.checks_by_protocol,
            "failures_by_protocol": self.failures_by_protocol,
            "checks_by_tenant": self.checks_by_tenant,
            "files_discovered_by_tenant": self.files_discovered_by_tenant,
            "files_discovered_by_protocol": self.files_discovered_by_protocol,
            "active_configurations_by_tenant": self.active_configurations_by_tenant,
            "check_duration": self.check_duration,
        }


class MetricsCollector:
    """Counts checks, failures and discoveries per tenant and protocol.

    Args:
        snapshot_path: Where ``persist`` writes the snapshot; None keeps
            the metrics in memory only
        clock: Time source for snapshot timestamps
    """

    def __init__(self, snapshot_path: Optional[Path] = None, clock: Optional[Clock] = None) -> None:
        self.snapshot_path = snapshot_path
        self._clock = clock or Clock()
        self._checks_by_protocol: Counter[str] = Counter()
        self._failures_by_protocol: Counter[str] = Counter()
        self._checks_by_tenant: Counter[str] = Counter()
        self._files_by_tenant: Counter[str] = Counter()
        self._files_by_protocol: Counter[str] = Counter()
        self._active_by_tenant: Dict[str, int] = {}
        self._durations = DurationHistogram()

    def record_check(
        self,
        tenant_id: str,
        protocol: str,
        success: bool,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Count one finished check."""
        self._checks_by_protocol[protocol] += 1
        self._checks_by_tenant[tenant_id] += 1
        if not success:
            self._failures_by_protocol[protocol] += 1
        if duration_seconds is not None:
            self._durations.observe(duration_seconds)

    def record_files_discovered(self, tenant_id: str, protocol: str, count: int) -> None:
        if count <= 0:
            return
        self._files_by_tenant[tenant_id] += count
        self._files_by_protocol[protocol] += count

    def set_active_configurations(self, counts: Mapping[str, int]) -> None:
        """Replace the per-tenant count of active configurations."""
        self._active_by_tenant = dict(counts)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            taken_at=self._clock.now(),
            checks_by_protocol=dict(self._checks_by_protocol),
            failures_by_protocol=dict(self._failures_by_protocol),
            checks_by_tenant=dict(self._checks_by_tenant),
            files_discovered_by_tenant=dict(self._files_by_tenant),
            files_discovered_by_protocol=dict(self._files_by_protocol),
            active_configurations_by_tenant=dict(self._active_by_tenant),
            check_duration=self._durations.to_dict(),
        )

    def persist(self) -> None:
        """Write the current snapshot to ``snapshot_path``, replacing it atomically."""
        if self.snapshot_path is None:
            return
        tmp_path = self.snapshot_path.with_suffix(".tmp")
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self.snapshot().to_dict(), indent=2))
            os.replace(tmp_path, self.snapshot_path)
        except OSError as e:
            logger.warning(f"Could not write metrics snapshot to {self.snapshot_path}: {e}")


def read_snapshot(path: Path) -> Optional[Dict[str, Any]]:
    """Load a persisted snapshot, or None if there is none or it is unreadable."""
    try:
        return json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable metrics snapshot {path}: {e}")
        return None
