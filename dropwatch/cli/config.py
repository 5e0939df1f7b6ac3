"""Dropwatch config command - Application settings management."""

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from dropwatch.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage Dropwatch settings.")
console = Console()

_SECRET_KEYS = {"database_url", "webhook_url"}


def _config_file_path() -> Path:
    from dropwatch.config import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE

    config_dir = Path(os.environ.get("DROPWATCH_CONFIG_DIR", DEFAULT_CONFIG_DIR))
    return config_dir / DEFAULT_CONFIG_FILE


@app.command("show")
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Section to show (scheduler, retention, notifier, secrets, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show unmasked secrets (use with caution).",
    ),
) -> None:
    """Show current settings.

    Example:
        dropwatch config show
        dropwatch config show scheduler
        dropwatch config show --format yaml
    """
    from dropwatch.config import (
        _config_to_dict,
        export_config_json,
        export_config_yaml,
        get_config,
    )

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config, mask_secrets=not unmask), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return
    elif format != "table":
        console.print(f"[red]Unknown format: {format}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    data = _config_to_dict(config, mask_secrets=not unmask)
    sections = {
        name: values for name, values in data.items() if isinstance(values, dict)
    }
    sections["paths"] = {
        key: value for key, value in data.items() if not isinstance(value, dict)
    }

    if section and section not in sections:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    console.print("[bold]Dropwatch Configuration[/bold]")
    console.print()

    for name in [section] if section else sections.keys():
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Sensitive", style="yellow")

        for key, value in sections[name].items():
            shown = "" if value is None else str(value)
            table.add_row(key, shown, "Yes" if key in _SECRET_KEYS else "")

        console.print(table)
        console.print()


@app.command("init")
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Run interactive configuration wizard.",
    ),
) -> None:
    """Write a settings file with defaults (or wizard answers).

    Example:
        dropwatch config init
        dropwatch config init --no-interactive --force
    """
    from dropwatch.config import DEFAULT_DATA_DIR, DropwatchConfig, ensure_directories, save_config

    config_path = _config_file_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    console.print("[bold]Initializing Dropwatch configuration...[/bold]")
    console.print()

    config = DropwatchConfig(
        config_dir=config_path.parent,
        data_dir=Path(os.environ.get("DROPWATCH_DATA_DIR", DEFAULT_DATA_DIR)),
    )

    if interactive:
        console.print("[bold cyan]Scheduler[/bold cyan]")
        config.scheduler.polling_interval_seconds = int(typer.prompt(
            "  Polling interval (seconds)",
            default=str(config.scheduler.polling_interval_seconds),
        ))
        config.scheduler.max_concurrent_checks = int(typer.prompt(
            "  Max concurrent checks",
            default=str(config.scheduler.max_concurrent_checks),
        ))
        config.scheduler.enable_distributed_locking = typer.confirm(
            "  Coordinate with other scheduler instances (distributed locking)?",
            default=config.scheduler.enable_distributed_locking,
        )

        console.print()
        console.print("[bold cyan]Storage[/bold cyan]")
        database_url = typer.prompt(
            "  Database URL",
            default=config.database_url,
        )
        config.database_url = database_url

        console.print()
        console.print("[bold cyan]Notifications[/bold cyan]")
        if typer.confirm("  Send notifications to a webhook?", default=False):
            config.notifier.kind = "webhook"
            config.notifier.webhook_url = typer.prompt("  Webhook URL")
        else:
            config.notifier.kind = "logging"

        console.print()
        console.print("[bold cyan]Logging[/bold cyan]")
        config.logging.level = typer.prompt(
            "  Log level",
            default=config.logging.level,
        ).upper()

    ensure_directories(config)
    save_config(config, config_path)

    # Owner read/write only; the file may hold a database password
    config_path.chmod(0o600)

    console.print()
    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")
    console.print("[dim]Config file permissions set to 0600 (owner only)[/dim]")


@app.command("path")
def config_path() -> None:
    """Show the settings file path.

    Example:
        dropwatch config path
    """
    config_file_path = _config_file_path()
    console.print(f"[bold]Config directory:[/bold] {config_file_path.parent}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")


@app.command("validate")
def validate_config() -> None:
    """Validate current settings.

    Example:
        dropwatch config validate
    """
    from dropwatch.config import get_config, validate_config as do_validate

    config = get_config()
    config_file_path = _config_file_path()

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    if config_file_path.exists():
        console.print("  [green]✓[/green] Config file exists")
    else:
        console.print("  [yellow]![/yellow] Config file exists [dim](using defaults)[/dim]")

    all_passed = True
    errors = do_validate(config)

    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} \\[{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
