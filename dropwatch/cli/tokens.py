"""Dropwatch tokens command - Preview date token resolution."""

from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dropwatch.cli.error_handler import InvalidArgumentError, handle_errors

app = typer.Typer(help="Preview how date tokens in patterns resolve.")
console = Console()


@app.command("list")
def list_tokens() -> None:
    """List the supported date tokens.

    Example:
        dropwatch tokens list
    """
    from dropwatch.tokens import SUPPORTED_TOKENS, resolve

    sample = datetime(2025, 1, 24, 2, 0)
    table = Table(title="Date Tokens")
    table.add_column("Token", style="cyan")
    table.add_column("Example (2025-01-24)", style="green")
    for token in SUPPORTED_TOKENS:
        table.add_row(token, resolve(token, sample, "UTC"))
    console.print(table)
    console.print("[dim]Tokens are case-insensitive and may appear in paths and names, never in hosts.[/dim]")


@app.command("preview")
@handle_errors
def preview(
    patterns: list[str] = typer.Argument(..., help="Path or name patterns to resolve."),
    at: Optional[str] = typer.Option(
        None,
        "--at",
        "-a",
        help="Reference instant in ISO 8601 (default: now). Naive values are UTC.",
    ),
    tz: str = typer.Option(
        "UTC",
        "--tz",
        help="IANA timezone the date is observed in.",
    ),
) -> None:
    """Resolve patterns at an instant.

    Example:
        dropwatch tokens preview "/files/{yyyy}/{mm}/{dd}" "data_{yyyymmdd}.csv"
        dropwatch tokens preview "{yyyy-mm-dd}" --at 2025-03-30T23:30:00Z --tz Europe/Berlin
    """
    from dropwatch.clock import Clock, ensure_utc
    from dropwatch.scheduler.schedule_evaluator import get_zone
    from dropwatch.tokens import invalid_tokens, resolve

    zone = get_zone(tz)

    if at:
        try:
            instant = ensure_utc(datetime.fromisoformat(at.replace("Z", "+00:00")))
        except ValueError:
            raise InvalidArgumentError(f"Invalid --at value: {at}")
    else:
        instant = Clock().now()

    console.print(f"[dim]At {instant.isoformat()} observed in {tz} ({instant.astimezone(zone).date()})[/dim]")
    for pattern in patterns:
        console.print(f"  {pattern} [dim]→[/dim] [green]{resolve(pattern, instant, zone)}[/green]")
        unknown = invalid_tokens(pattern)
        if unknown:
            console.print(f"    [yellow]! not recognised, left as is: {', '.join(unknown)}[/yellow]")
