"""Persistence for configurations, executions, discoveries and leases."""

from dropwatch.database.connection import Database, init_engine, open_database
from dropwatch.database.repositories import (
    ConfigurationRepository,
    DiscoveryRepository,
    ExecutionRepository,
    RepositoryFactory,
)

__all__ = [
    "ConfigurationRepository",
    "Database",
    "DiscoveryRepository",
    "ExecutionRepository",
    "RepositoryFactory",
    "init_engine",
    "open_database",
]
