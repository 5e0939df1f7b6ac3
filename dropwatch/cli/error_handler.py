"""Global exception handling for the Dropwatch CLI.

Commands raise ``CommandError`` subclasses (or let library errors
propagate); the ``handle_errors`` decorator turns them into a message on
stderr and the matching exit code.
"""

from functools import wraps
from typing import Any, Callable, TypeVar
import logging

import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from dropwatch.cli.exit_codes import ExitCode
from dropwatch.errors import AdapterError, ConfigurationError, DropwatchError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class CommandError(DropwatchError):
    """Base exception for CLI command failures.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class InvalidArgumentError(CommandError):
    """Raised when user input fails validation checks."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(CommandError):
    """Raised when a configuration or execution does not exist."""

    exit_code = ExitCode.NOT_FOUND


class CheckFailedError(CommandError):
    """Raised when a one-off check ends in a Failed execution."""

    exit_code = ExitCode.CHECK_FAILED


class DaemonStateError(CommandError):
    """Raised when the daemon is already running, or not running when it must be."""

    exit_code = ExitCode.DAEMON_STATE


def _debug_enabled() -> bool:
    from dropwatch.main import is_debug

    return is_debug()


def _exit_code_for(error: DropwatchError) -> int:
    if isinstance(error, CommandError):
        return error.exit_code
    if isinstance(error, ConfigurationError):
        return ExitCode.CONFIGURATION_ERROR
    if isinstance(error, AdapterError):
        return ExitCode.CHECK_FAILED
    return ExitCode.GENERAL_ERROR


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - DropwatchError: message on stderr, exit code by error type
    - SQLAlchemyError: database error exit code
    - KeyboardInterrupt: cancellation message, exit code 130
    - Anything else: generic message, exit code 1

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise NotFoundError("Configuration not found")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DropwatchError as e:
            exit_code = _exit_code_for(e)
            details = getattr(e, "details", {})
            logger.error(
                f"{type(e).__name__}: {e.message}",
                extra={"exit_code": exit_code, "details": details},
            )

            message = e.message if isinstance(e, CommandError) else str(e)
            console.print(f"[red]Error:[/red] {message}")
            for key, value in details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")

            raise typer.Exit(code=exit_code)

        except SQLAlchemyError as e:
            logger.exception("Database error")
            console.print(f"[red]Database error:[/red] {e}")
            raise typer.Exit(code=ExitCode.DATABASE_ERROR)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except (typer.Exit, typer.Abort):
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            if _debug_enabled():
                console.print_exception()
            else:
                console.print("[dim]Run with --debug for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
