"""CLI command modules for Dropwatch.

This package contains the command implementations and the supporting
utilities for exit codes, error handling and output formatting.
"""

from dropwatch.cli import check, config, configs, executions, run, tokens
from dropwatch.cli.exit_codes import ExitCode
from dropwatch.cli.error_handler import (
    CheckFailedError,
    CommandError,
    DaemonStateError,
    InvalidArgumentError,
    NotFoundError,
    handle_errors,
)
from dropwatch.cli.output import (
    format_duration_ms,
    format_file_size,
    format_status,
    format_timestamp,
    print_json,
    print_key_value,
    print_result,
)

__all__ = [
    # Command modules
    "check",
    "config",
    "configs",
    "executions",
    "run",
    "tokens",
    # Exit codes
    "ExitCode",
    # Error handling
    "CheckFailedError",
    "CommandError",
    "DaemonStateError",
    "InvalidArgumentError",
    "NotFoundError",
    "handle_errors",
    # Output
    "format_duration_ms",
    "format_file_size",
    "format_status",
    "format_timestamp",
    "print_json",
    "print_key_value",
    "print_result",
]
