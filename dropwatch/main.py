"""Main CLI entry point for Dropwatch."""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from dropwatch import __app_name__, __version__
from dropwatch.cli import check, config, configs, executions, run, tokens
from dropwatch.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Dropwatch - scheduled discovery of files arriving on remote drop locations.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(run.app, name="run")
app.add_typer(configs.app, name="configs")
app.add_typer(executions.app, name="executions")
app.add_typer(tokens.app, name="tokens")
app.add_typer(config.app, name="config")
app.command("check")(check.check)

logger = logging.getLogger(__name__)


@dataclass
class GlobalOptions:
    """Flags given before the command name, shared with every command."""

    verbose: bool = False
    debug: bool = False
    json: bool = False
    quiet: bool = False

    def conflicts(self) -> Optional[str]:
        """Return an error message when mutually exclusive flags are combined."""
        for other in ("verbose", "debug"):
            if self.quiet and getattr(self, other):
                return f"--quiet and --{other} are mutually exclusive"
        return None


_options = GlobalOptions()


def _show_version(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=_show_version,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log INFO and above.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log DEBUG and above and print full tracebacks on errors.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print machine-readable JSON where the command supports it.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also log to this file, at DEBUG level.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config-file",
        help="Settings file to use instead of the default location.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Dropwatch - scheduled discovery of files arriving on remote drop locations.

    Dropwatch checks FTP, HTTPS and object storage locations on cron
    schedules for files whose paths carry date tokens, records every new
    file once per day and notifies downstream consumers.

    [bold]Commands:[/bold]

    • [cyan]run[/cyan] - Start, inspect or stop the scheduler daemon
    • [cyan]configs[/cyan] - Import and manage check configurations
    • [cyan]executions[/cyan] - Inspect check history
    • [cyan]check[/cyan] - Check one configuration now
    • [cyan]tokens[/cyan] - Preview date token resolution
    • [cyan]config[/cyan] - Manage settings

    [bold]Examples:[/bold]

        dropwatch configs import definitions.yaml
        dropwatch run --daemon
        dropwatch --json executions list --status failed
    """
    global _options

    _options = GlobalOptions(verbose=verbose, debug=debug, json=json_output, quiet=quiet)
    conflict = _options.conflicts()
    if conflict:
        console.print(f"[red]Error:[/red] {conflict}")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    from dropwatch.config import get_config, load_config, set_config
    from dropwatch.log import configure_logging

    if config_file:
        set_config(load_config(config_file))

    # One-shot commands stay at WARNING unless a flag asks for more.
    configure_logging(
        get_config().logging,
        verbose=verbose,
        debug=debug,
        quiet=quiet,
        log_file=log_file,
        default_level=logging.WARNING,
    )
    logger.debug(f"Dropwatch v{__version__} starting with {_options}")


def get_global_option(name: str) -> bool:
    """Get the value of a global CLI option (verbose, debug, json, quiet)."""
    if name not in {f.name for f in fields(GlobalOptions)}:
        return False
    return getattr(_options, name)


def is_verbose() -> bool:
    return _options.verbose or _options.debug


def is_debug() -> bool:
    return _options.debug


def is_json() -> bool:
    """Check if JSON output mode is enabled."""
    return _options.json


def is_quiet() -> bool:
    return _options.quiet


__all__ = [
    "app",
    "console",
    "GlobalOptions",
    "get_global_option",
    "is_verbose",
    "is_debug",
    "is_json",
    "is_quiet",
]


if __name__ == "__main__":
    app()
