"""Admission control for concurrent checks.

The governor enforces a fixed ceiling on in-flight executions and keeps
one configuration from being checked twice at the same time. Admission
never waits: a configuration that cannot be admitted is reported as
deferred or skipped and the loop moves on.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import Optional, Set

from dropwatch.scheduler.lease import LeaseStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 100


class Admission(str, Enum):
    """Result of an admission attempt."""

    ADMITTED = "admitted"
    AT_CAPACITY = "at_capacity"
    ALREADY_RUNNING = "already_running"
    LEASE_HELD = "lease_held"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMITTED


def lease_key(configuration_id: str) -> str:
    return f"dropwatch:configuration:{configuration_id}"


class ConcurrencyGovernor:
    """Bounds in-flight executions and enforces per-configuration exclusion.

    With a ``lease_store`` the exclusion also holds across scheduler
    instances that share the store.

    Example:
        governor = ConcurrencyGovernor(max_concurrent=100)
        if governor.try_admit(config.id).admitted:
            try:
                ...
            finally:
                governor.release(config.id)
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        lease_store: Optional[LeaseStore] = None,
        lease_ttl: timedelta = timedelta(minutes=10),
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = max_concurrent
        self._lease_store = lease_store
        self._lease_ttl = lease_ttl
        self._in_flight: Set[str] = set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def available(self) -> int:
        return self._max_concurrent - len(self._in_flight)

    def is_running(self, configuration_id: str) -> bool:
        return configuration_id in self._in_flight

    def try_admit(self, configuration_id: str) -> Admission:
        """Try to admit a configuration for execution without waiting.

        Args:
            configuration_id: Configuration to admit

        Returns:
            ADMITTED, or the reason it was not admitted
        """
        if configuration_id in self._in_flight:
            logger.debug(f"Configuration {configuration_id} is already running; skipping")
            return Admission.ALREADY_RUNNING

        if len(self._in_flight) >= self._max_concurrent:
            logger.debug(
                f"Concurrency ceiling of {self._max_concurrent} reached; "
                f"deferring configuration {configuration_id}"
            )
            return Admission.AT_CAPACITY

        if self._lease_store is not None:
            if not self._lease_store.acquire(lease_key(configuration_id), self._lease_ttl):
                logger.debug(f"Configuration {configuration_id} is leased by another instance")
                return Admission.LEASE_HELD

        self._in_flight.add(configuration_id)
        return Admission.ADMITTED

    def release(self, configuration_id: str) -> None:
        """Release a previously admitted configuration."""
        if configuration_id not in self._in_flight:
            return
        self._in_flight.discard(configuration_id)
        if self._lease_store is not None:
            try:
                self._lease_store.release(lease_key(configuration_id))
            except Exception as e:
                # The lease expires on its own after its TTL
                logger.warning(f"Failed to release lease for {configuration_id}: {e}")
