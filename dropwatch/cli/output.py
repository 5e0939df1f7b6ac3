"""Rendering helpers shared by the Dropwatch commands."""

import json
from datetime import datetime
from typing import Any, Mapping, Optional

from rich.console import Console
from rich.json import JSON as RichJSON

from dropwatch.domain import ExecutionStatus

console = Console()

STATUS_STYLES = {
    ExecutionStatus.PENDING: "dim",
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
}

_SIZE_UNITS = ("KB", "MB", "GB")


def print_json(data: Any, console_instance: Optional[Console] = None) -> None:
    """Print ``data`` as indented JSON. Values JSON cannot hold go through ``str``."""
    (console_instance or console).print(RichJSON(json.dumps(data, indent=2, default=str)))


def print_result(
    success: bool,
    message: str,
    details: Optional[Mapping[str, Any]] = None,
    console_instance: Optional[Console] = None,
) -> None:
    """Print a ✓/✗ line followed by the details that have a value.

    Example:
        print_result(True, "Check completed", {"new files": 1})
    """
    out = console_instance or console
    mark = "[green]✓[/green]" if success else "[red]✗[/red]"
    out.print(f"{mark} {message}")
    for key, value in (details or {}).items():
        if value is not None:
            out.print(f"  [dim]{key}:[/dim] {value}")


def _render_value(value: Any) -> str:
    if value is None:
        return "[dim]N/A[/dim]"
    if isinstance(value, bool):
        return "[green]Yes[/green]" if value else "[red]No[/red]"
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def print_key_value(
    data: Mapping[str, Any],
    title: Optional[str] = None,
    key_style: str = "cyan",
    console_instance: Optional[Console] = None,
) -> None:
    """Print one aligned ``key : value`` line per entry."""
    out = console_instance or console
    if title:
        out.print(f"[bold]{title}[/bold]\n")

    width = max((len(str(key)) for key in data), default=0)
    for key, value in data.items():
        out.print(f"  [{key_style}]{str(key):<{width}}[/{key_style}] : {_render_value(value)}")


def format_status(status: ExecutionStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_duration_ms(duration_ms: Optional[int]) -> str:
    """Format a duration in milliseconds.

    Example:
        format_duration_ms(1500)  # "1.5s"
        format_duration_ms(90000)  # "1m 30s"
    """
    if duration_ms is None:
        return "-"
    minutes, seconds = divmod(duration_ms / 1000, 60)
    if not minutes:
        return f"{seconds:.1f}s"
    return f"{int(minutes)}m {int(seconds)}s"


def format_file_size(size_bytes: Optional[int]) -> str:
    """Format a byte count with binary units, e.g. ``2.00 KB``."""
    if size_bytes is None:
        return "-"
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in _SIZE_UNITS[:-1]:
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} {_SIZE_UNITS[-1]}"
