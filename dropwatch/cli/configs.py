"""Dropwatch configs command - Manage check configurations."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dropwatch.cli.error_handler import NotFoundError, handle_errors
from dropwatch.cli.output import format_file_size, format_timestamp, print_json, print_key_value

app = typer.Typer(help="Manage check configurations (where, when and what to look for).")
console = Console()


def _open_database():
    from dropwatch.config import get_config
    from dropwatch.database import open_database

    return open_database(get_config().database_url)


@app.command("list")
@handle_errors
def list_configurations(
    tenant: Optional[str] = typer.Option(
        None,
        "--tenant",
        "-t",
        help="Only show configurations of this tenant.",
    ),
    status: Optional[str] = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (active, inactive, all).",
    ),
) -> None:
    """List check configurations.

    Example:
        dropwatch configs list
        dropwatch configs list --tenant acme --status active
    """
    from dropwatch.clock import Clock
    from dropwatch.database import RepositoryFactory
    from dropwatch.main import is_json
    from dropwatch.scheduler.schedule_evaluator import describe_next

    db = _open_database()
    try:
        with db.session() as session:
            configurations = RepositoryFactory(session).configurations.list_all(tenant)
    finally:
        db.dispose()

    if status == "active":
        configurations = [c for c in configurations if c.is_active]
    elif status == "inactive":
        configurations = [c for c in configurations if not c.is_active]

    if is_json():
        print_json([
            {
                "id": c.id,
                "tenant_id": c.tenant_id,
                "name": c.name,
                "protocol": c.protocol.value,
                "schedule": c.schedule_expression,
                "timezone": c.timezone,
                "active": c.is_active,
                "next_due_at": c.next_due_at,
            }
            for c in configurations
        ])
        return

    if not configurations:
        console.print("[yellow]No configurations found.[/yellow]")
        console.print("[dim]Import some with: dropwatch configs import definitions.yaml[/dim]")
        return

    now = Clock().now()
    table = Table(title="Check Configurations")
    table.add_column("ID", style="cyan")
    table.add_column("Tenant", style="magenta")
    table.add_column("Name")
    table.add_column("Protocol", style="blue")
    table.add_column("Schedule", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Next Check")

    for configuration in configurations:
        status_str = "[green]active[/green]" if configuration.is_active else "[yellow]inactive[/yellow]"
        next_check = describe_next(configuration.next_due_at, now) if configuration.is_active else "-"
        table.add_row(
            configuration.id[:8],
            configuration.tenant_id,
            configuration.name,
            configuration.protocol.value,
            f"{configuration.schedule_expression} ({configuration.timezone})",
            status_str,
            next_check,
        )

    console.print(table)


@app.command("import")
@handle_errors
def import_configurations(
    path: Path = typer.Argument(
        ...,
        help="YAML file with a 'configurations' list.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate the definitions without saving them.",
    ),
) -> None:
    """Import configuration definitions from a YAML file.

    Definitions with an ``id`` replace the stored configuration of that
    id; schedule progress is kept while the schedule is unchanged.

    Example:
        dropwatch configs import definitions.yaml
        dropwatch configs import definitions.yaml --dry-run
    """
    from dropwatch.database import RepositoryFactory
    from dropwatch.definitions import load_definitions, merge_with_existing

    configurations = load_definitions(path)

    if dry_run:
        console.print(f"[green]✓[/green] {len(configurations)} definitions are valid")
        return

    created = 0
    updated = 0
    db = _open_database()
    try:
        with db.session() as session:
            repository = RepositoryFactory(session).configurations
            for configuration in configurations:
                existing = repository.get_by_id(configuration.id)
                repository.save(merge_with_existing(configuration, existing))
                if existing is None:
                    created += 1
                else:
                    updated += 1
    finally:
        db.dispose()

    console.print(f"[green]✓[/green] Imported {len(configurations)} configurations")
    console.print(f"  [dim]created:[/dim] {created}")
    console.print(f"  [dim]updated:[/dim] {updated}")


@app.command("show")
@handle_errors
def show_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
    discoveries: int = typer.Option(
        10,
        "--discoveries",
        "-n",
        help="Number of recent discoveries to show.",
        min=0,
    ),
) -> None:
    """Show a configuration with its recent discoveries.

    Example:
        dropwatch configs show 3f2c9a10-...
    """
    from dropwatch.clock import Clock
    from dropwatch.database import RepositoryFactory
    from dropwatch.scheduler.schedule_evaluator import describe_next

    db = _open_database()
    try:
        with db.session() as session:
            repos = RepositoryFactory(session)
            configuration = repos.configurations.get_by_id(configuration_id)
            if configuration is None:
                raise NotFoundError(f"Configuration not found: {configuration_id}")
            recent = repos.discoveries.list_for_configuration(configuration_id, limit=discoveries)
            total = repos.discoveries.count(configuration_id)
    finally:
        db.dispose()

    print_key_value(
        {
            "ID": configuration.id,
            "Tenant": configuration.tenant_id,
            "Name": configuration.name,
            "Description": configuration.description,
            "Protocol": configuration.protocol.value,
            "Location": configuration.settings.location,
            "Path pattern": configuration.path_pattern,
            "Name pattern": configuration.name_pattern,
            "Extension": configuration.file_extension,
            "Schedule": configuration.schedule_expression,
            "Timezone": configuration.timezone,
            "Active": configuration.is_active,
            "Last evaluated": configuration.last_evaluated_at,
            "Next due": configuration.next_due_at,
            "Next check": describe_next(configuration.next_due_at, Clock().now()),
            "Discoveries": total,
        },
        title=f"Configuration: {configuration.name or configuration.id}",
    )

    if not recent:
        return

    console.print()
    table = Table(title="Recent Discoveries")
    table.add_column("Date", style="cyan")
    table.add_column("URL")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Notification", style="bold")
    for discovery in recent:
        table.add_row(
            discovery.discovery_date.isoformat(),
            discovery.url,
            format_file_size(discovery.size),
            format_timestamp(discovery.last_modified_remote),
            discovery.notification_status.value,
        )
    console.print(table)


def _set_active(configuration_id: str, active: bool) -> None:
    from dropwatch.database import RepositoryFactory

    db = _open_database()
    try:
        with db.session() as session:
            found = RepositoryFactory(session).configurations.set_active(configuration_id, active)
    finally:
        db.dispose()

    if not found:
        raise NotFoundError(f"Configuration not found: {configuration_id}")


@app.command("enable")
@handle_errors
def enable_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
) -> None:
    """Enable a configuration so the scheduler checks it again.

    Example:
        dropwatch configs enable 3f2c9a10-...
    """
    _set_active(configuration_id, True)
    console.print(f"[green]✓ Configuration {configuration_id} enabled[/green]")


@app.command("disable")
@handle_errors
def disable_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
) -> None:
    """Disable a configuration; the scheduler stops checking it.

    Example:
        dropwatch configs disable 3f2c9a10-...
    """
    _set_active(configuration_id, False)
    console.print(f"[yellow]Configuration {configuration_id} disabled[/yellow]")


@app.command("delete")
@handle_errors
def delete_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Delete without confirmation.",
    ),
) -> None:
    """Delete a configuration.

    Example:
        dropwatch configs delete 3f2c9a10-... --force
    """
    from dropwatch.database import RepositoryFactory

    if not force:
        confirm = typer.confirm(f"Delete configuration {configuration_id}?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit()

    db = _open_database()
    try:
        with db.session() as session:
            deleted = RepositoryFactory(session).configurations.delete(configuration_id)
    finally:
        db.dispose()

    if not deleted:
        raise NotFoundError(f"Configuration not found: {configuration_id}")
    console.print(f"[green]✓ Configuration {configuration_id} deleted[/green]")
