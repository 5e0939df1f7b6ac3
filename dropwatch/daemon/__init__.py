"""Daemon module for Dropwatch.

Runs the scheduler loop as a long-lived foreground or background
service.
"""

from dropwatch.daemon.pid import PIDFile
from dropwatch.daemon.service import (
    Components,
    DropwatchDaemon,
    build_components,
    create_notifier,
    daemonize,
    run_daemon,
)

__all__ = [
    "Components",
    "DropwatchDaemon",
    "PIDFile",
    "build_components",
    "create_notifier",
    "daemonize",
    "run_daemon",
]
