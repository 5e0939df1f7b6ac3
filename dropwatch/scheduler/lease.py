"""Lease stores for cluster-wide per-configuration exclusion.

A lease is a time-bound lock: ``acquire`` succeeds when no unexpired lease
exists for the key (or the caller already owns it), and a lease left behind
by a crashed instance becomes available again once its TTL passes.
"""

from __future__ import annotations

import logging
import os
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, or_, update

from dropwatch.clock import Clock
from dropwatch.database.connection import Database
from dropwatch.database.models import LeaseRecord
from dropwatch.database.repositories import insert_ignore

logger = logging.getLogger(__name__)


def default_owner() -> str:
    """Identity of this scheduler process, used as the lease owner."""
    return f"{socket.gethostname()}:{os.getpid()}"


class LeaseStore(ABC):
    """Conditional-write store of expiring locks."""

    @abstractmethod
    def acquire(self, key: str, ttl: timedelta) -> bool:
        """Try to take the lease for ``key`` for ``ttl``.

        Returns:
            True if this owner now holds the lease
        """

    @abstractmethod
    def release(self, key: str) -> None:
        """Give up the lease for ``key`` if this owner holds it."""


@dataclass
class _Lease:
    owner: str
    expires_at: datetime


class InMemoryLeaseStore(LeaseStore):
    """Process-local lease store; several owners may share one instance."""

    def __init__(self, owner: Optional[str] = None, clock: Optional[Clock] = None,
                 leases: Optional[Dict[str, _Lease]] = None) -> None:
        self.owner = owner or default_owner()
        self._clock = clock or Clock()
        self._leases: Dict[str, _Lease] = leases if leases is not None else {}

    def for_owner(self, owner: str) -> "InMemoryLeaseStore":
        """Return a view of the same leases acting as a different owner."""
        return InMemoryLeaseStore(owner=owner, clock=self._clock, leases=self._leases)

    def acquire(self, key: str, ttl: timedelta) -> bool:
        now = self._clock.now()
        lease = self._leases.get(key)
        if lease is not None and lease.owner != self.owner and lease.expires_at > now:
            return False
        self._leases[key] = _Lease(owner=self.owner, expires_at=now + ttl)
        return True

    def release(self, key: str) -> None:
        lease = self._leases.get(key)
        if lease is not None and lease.owner == self.owner:
            del self._leases[key]


class SqlLeaseStore(LeaseStore):
    """Lease store backed by the ``leases`` table.

    Acquisition is a conditional UPDATE of an expired (or own) row followed
    by an insert-if-absent, so two instances racing for the same key cannot
    both succeed.
    """

    def __init__(self, db: Database, owner: Optional[str] = None, clock: Optional[Clock] = None) -> None:
        self._db = db
        self.owner = owner or default_owner()
        self._clock = clock or Clock()

    def acquire(self, key: str, ttl: timedelta) -> bool:
        now = self._clock.now()
        expires_at = now + ttl

        with self._db.session() as session:
            taken_over = session.execute(
                update(LeaseRecord)
                .where(
                    LeaseRecord.key == key,
                    or_(LeaseRecord.expires_at <= now, LeaseRecord.owner == self.owner),
                )
                .values(owner=self.owner, acquired_at=now, expires_at=expires_at)
            ).rowcount
            if taken_over:
                return True

            created = insert_ignore(
                session,
                LeaseRecord,
                {"key": key, "owner": self.owner, "acquired_at": now, "expires_at": expires_at},
                ["key"],
            )

        if not created:
            logger.debug(f"Lease {key} is held by another scheduler instance")
        return created

    def release(self, key: str) -> None:
        with self._db.session() as session:
            session.execute(
                delete(LeaseRecord).where(LeaseRecord.key == key, LeaseRecord.owner == self.owner)
            )
