"""Dropwatch check command - Run one check immediately."""

import asyncio

import typer
from rich.console import Console

from dropwatch.cli.error_handler import CheckFailedError, NotFoundError, handle_errors
from dropwatch.cli.output import format_duration_ms, print_json, print_result

console = Console()


async def _run_check(configuration_id: str):
    from dropwatch.config import get_config
    from dropwatch.daemon.service import build_components
    from dropwatch.database import RepositoryFactory

    components = build_components(get_config())
    try:
        with components.db.session() as session:
            configuration = RepositoryFactory(session).configurations.get_by_id(configuration_id)
        if configuration is None:
            raise NotFoundError(f"Configuration not found: {configuration_id}")
        return await components.coordinator.run(configuration)
    finally:
        await components.notifier.close()
        components.shutdown_executor()
        components.db.dispose()


@handle_errors
def check(
    configuration_id: str = typer.Argument(..., help="Configuration ID to check now."),
) -> None:
    """Check a configuration's remote location once, right now.

    The check is recorded as an execution like a scheduled one; new
    files are stored and notified. Schedule progress is left untouched.
    This runs in the calling process, outside a running daemon's
    admission ceiling.

    Example:
        dropwatch check 3f2c9a10-...
    """
    from dropwatch.main import is_json

    result = asyncio.run(_run_check(configuration_id))
    execution = result.execution

    if is_json():
        print_json({
            "execution_id": execution.id,
            "status": execution.status.value,
            "files_found": execution.files_found,
            "resolved_path": execution.resolved_path,
            "resolved_name": execution.resolved_name,
            "error_category": execution.error_category.value if execution.error_category else None,
            "error_detail": execution.error_detail,
            "discoveries": [d.url for d in result.discoveries],
        })
    else:
        print_result(
            result.success,
            f"Check {execution.status.value.lower()}",
            {
                "execution": execution.id,
                "path": execution.resolved_path,
                "name": execution.resolved_name,
                "new files": execution.files_found,
                "duration": format_duration_ms(execution.duration_ms),
            },
        )
        for discovery in result.discoveries:
            console.print(f"  [green]+[/green] {discovery.url}")

    if not result.success:
        raise CheckFailedError(
            "Check failed",
            details={
                "category": execution.error_category.value if execution.error_category else "unknown",
                "detail": execution.error_detail,
            },
        )
