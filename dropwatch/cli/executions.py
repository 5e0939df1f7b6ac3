"""Dropwatch executions command - Inspect check history."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dropwatch.cli.error_handler import InvalidArgumentError, handle_errors
from dropwatch.cli.output import format_duration_ms, format_status, format_timestamp, print_json

app = typer.Typer(help="Inspect check executions.")
console = Console()


@app.command("list")
@handle_errors
def list_executions(
    configuration_id: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Only show executions of this configuration.",
    ),
    tenant: Optional[str] = typer.Option(
        None,
        "--tenant",
        "-t",
        help="Only show executions of this tenant.",
    ),
    status: Optional[str] = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (Pending, Running, Completed, Failed).",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of executions to show.",
        min=1,
        max=1000,
    ),
) -> None:
    """List executions, newest first.

    Example:
        dropwatch executions list
        dropwatch executions list --status failed --limit 50
    """
    from dropwatch.config import get_config
    from dropwatch.database import RepositoryFactory, open_database
    from dropwatch.domain import ExecutionStatus
    from dropwatch.main import is_json

    status_filter = None
    if status:
        by_name = {s.value.lower(): s for s in ExecutionStatus}
        status_filter = by_name.get(status.lower())
        if status_filter is None:
            raise InvalidArgumentError(
                f"Unknown status '{status}'",
                details={"valid": ", ".join(s.value for s in ExecutionStatus)},
            )

    db = open_database(get_config().database_url)
    try:
        with db.session() as session:
            executions = RepositoryFactory(session).executions.get_history(
                configuration_id=configuration_id,
                tenant_id=tenant,
                status=status_filter,
                limit=limit,
            )
    finally:
        db.dispose()

    if is_json():
        print_json([
            {
                "id": e.id,
                "configuration_id": e.configuration_id,
                "tenant_id": e.tenant_id,
                "status": e.status.value,
                "scheduled_for": e.scheduled_for,
                "started_at": e.started_at,
                "completed_at": e.completed_at,
                "files_found": e.files_found,
                "error_category": e.error_category.value if e.error_category else None,
                "error_detail": e.error_detail,
                "resolved_path": e.resolved_path,
                "resolved_name": e.resolved_name,
                "duration_ms": e.duration_ms,
                "retry_count": e.retry_count,
            }
            for e in executions
        ])
        return

    if not executions:
        console.print("[yellow]No executions found.[/yellow]")
        return

    table = Table(title="Executions")
    table.add_column("ID", style="cyan")
    table.add_column("Configuration", style="magenta")
    table.add_column("Scheduled For")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="red")

    for execution in executions:
        error = ""
        if execution.error_category:
            error = execution.error_category.value
            if execution.error_detail:
                error += f": {execution.error_detail[:60]}"
        table.add_row(
            execution.id[:8],
            execution.configuration_id[:8],
            format_timestamp(execution.scheduled_for),
            format_status(execution.status),
            str(execution.files_found),
            format_duration_ms(execution.duration_ms),
            error,
        )

    console.print(table)
