"""Dropwatch run command - Start, inspect and stop the scheduler daemon."""

import asyncio
import atexit
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from dropwatch.cli.error_handler import CommandError, DaemonStateError, handle_errors
from dropwatch.cli.exit_codes import ExitCode
from dropwatch.cli.output import print_json, print_key_value
from dropwatch.config import DropwatchConfig
from dropwatch.daemon.pid import PIDFile

app = typer.Typer(help="Start the Dropwatch scheduler daemon.")
console = Console()

logger = logging.getLogger(__name__)


def _settings_option():
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Settings file to use instead of the default location.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    )


def _load_settings(config_file: Optional[Path]) -> DropwatchConfig:
    from dropwatch.config import load_config

    return load_config(config_file)


def _require_valid(config: DropwatchConfig) -> None:
    from dropwatch.config import validate_config

    problems = [e for e in validate_config(config) if e.severity == "error"]
    if problems:
        raise CommandError(
            "Settings are invalid",
            exit_code=ExitCode.CONFIGURATION_ERROR,
            details={p.field: p.message for p in problems},
        )


def _claim_pid_file(config: DropwatchConfig) -> PIDFile:
    """Return the PID file for a new daemon, refusing if one is alive."""
    pid_file = PIDFile.for_data_dir(config.data_dir)
    if pid_file.is_running():
        raise DaemonStateError("Daemon is already running", details={"pid": pid_file.read()})
    if pid_file.clear_if_stale():
        logger.info(f"Removed stale PID file {pid_file.path}")
    return pid_file


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = _settings_option(),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Fork into the background.",
    ),
    max_concurrent: Optional[int] = typer.Option(
        None,
        "--max-concurrent",
        "-m",
        help="Maximum concurrently running checks (admission ceiling).",
        min=1,
        max=1000,
    ),
    polling_interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between scheduler ticks.",
        min=1,
        max=3600,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log at DEBUG level.",
    ),
) -> None:
    """Start the Dropwatch scheduler.

    Every tick the scheduler reads the active configurations, admits the
    due ones up to the concurrency ceiling and checks their remote
    locations for new files. SIGTERM or Ctrl+C stops ticking and gives
    in-flight checks the drain timeout to finish.

    Example:
        dropwatch run
        dropwatch run --daemon --max-concurrent 50
        dropwatch run status
    """
    if ctx.invoked_subcommand is not None:
        return

    from dropwatch.config import ensure_directories
    from dropwatch.daemon.service import daemonize, run_daemon
    from dropwatch.log import configure_logging

    config = _load_settings(config_file)
    _require_valid(config)
    ensure_directories(config)
    pid_file = _claim_pid_file(config)

    console.print("[bold green]Starting Dropwatch scheduler...[/bold green]")
    if verbose:
        print_key_value({
            "Settings file": config_file or "default",
            "Max concurrent checks": max_concurrent or config.scheduler.max_concurrent_checks,
            "Polling interval": f"{polling_interval or config.scheduler.polling_interval_seconds}s",
            "Distributed locking": config.scheduler.enable_distributed_locking,
            "Daemon mode": daemon,
        })

    log_file = Path(config.logging.file) if config.logging.file else None
    if daemon and log_file is None:
        log_file = config.data_dir / "daemon.log"
    configure_logging(config.logging, debug=verbose, log_file=log_file)

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Daemon mode is not supported on Windows; staying in the foreground[/yellow]")
        else:
            console.print(f"[dim]Forking to background, logging to {log_file}[/dim]")
            daemonize(log_file)

    try:
        pid_file.create()
    except OSError as e:
        raise DaemonStateError(f"Cannot write PID file {pid_file.path}: {e}") from e
    atexit.register(pid_file.remove)

    try:
        asyncio.run(run_daemon(config, {
            "max_concurrent": max_concurrent,
            "polling_interval": polling_interval,
        }))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@app.command()
@handle_errors
def status(
    config_file: Optional[Path] = _settings_option(),
) -> None:
    """Show whether the daemon runs, how many checks are unfinished and
    the counters from the daemon's last tick.

    Example:
        dropwatch run status
        dropwatch --json run status
    """
    from dropwatch.config import _config_to_dict
    from dropwatch.database import RepositoryFactory, open_database
    from dropwatch.main import is_json
    from dropwatch.metrics import METRICS_FILE_NAME, read_snapshot

    config = _load_settings(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)
    pid = pid_file.read() if pid_file.is_running() else None
    stale_removed = pid is None and pid_file.clear_if_stale()

    db = open_database(config.database_url)
    try:
        with db.session() as session:
            unfinished = len(RepositoryFactory(session).executions.list_unfinished())
    finally:
        db.dispose()

    database = _config_to_dict(config)["database_url"]
    metrics = read_snapshot(config.data_dir / METRICS_FILE_NAME)

    if is_json():
        print_json({
            "running": pid is not None,
            "pid": pid,
            "unfinished_executions": unfinished,
            "data_dir": str(config.data_dir),
            "database_url": database,
            "metrics": metrics,
        })
        return

    if pid is None:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if stale_removed:
            console.print("[dim]  (removed stale PID file)[/dim]")
    else:
        console.print(f"[green]● Daemon is running[/green] (PID: {pid})")

    print_key_value({
        "Data directory": config.data_dir,
        "Database": database,
        "Unfinished executions": unfinished,
    })

    if metrics:
        console.print()
        print_key_value(
            {
                "Checks executed": metrics.get("checks_executed"),
                "Failures": metrics.get("failures"),
                "Files discovered": metrics.get("files_discovered"),
                "Active configurations": sum(metrics.get("active_configurations_by_tenant", {}).values()),
                "As of": metrics.get("taken_at"),
            },
            title="Metrics",
        )


@app.command()
@handle_errors
def stop(
    config_file: Optional[Path] = _settings_option(),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Kill the daemon with SIGKILL instead of asking it to drain.",
    ),
) -> None:
    """Stop the daemon.

    SIGTERM lets in-flight checks finish within the drain timeout; checks
    still running after that stay Running until the retention sweep fails
    them. --force sends SIGKILL.

    Example:
        dropwatch run stop
        dropwatch run stop --force
    """
    config = _load_settings(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)

    pid = pid_file.read()
    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        return

    if not pid_file.is_running():
        pid_file.remove()
        console.print("[yellow]Daemon is not running (stale PID file removed)[/yellow]")
        return

    try:
        os.kill(pid, signal.SIGKILL if force else signal.SIGTERM)
    except ProcessLookupError:
        pid_file.remove()
        console.print("[yellow]Daemon process not found (already stopped)[/yellow]")
        return
    except PermissionError as e:
        raise DaemonStateError(f"Permission denied: cannot signal process {pid}") from e

    if force:
        pid_file.remove()
        console.print(f"[red]Force killed daemon (PID: {pid})[/red]")
    else:
        console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")
        console.print("[dim]In-flight checks get the drain timeout to finish...[/dim]")
