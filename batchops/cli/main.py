"""Main CLI entry point using Typer."""

import json
from pathlib import Path
from typing import Any

import anyio
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from batchops import __version__
from batchops.conflict.detector import Conflict, detect_conflicts
from batchops.core.config import get_settings
from batchops.core.errors import BatchOperationError, CircularDependencyError
from batchops.core.log import configure_logging
from batchops.core.state import BatchStatus
from batchops.execution.scheduler import DependencyScheduler
from batchops.manager import BatchOperationManager
from batchops.operations.models import BatchOptions, Operation
from batchops.store import InMemoryUserStore

app = typer.Typer(
    name="batchops",
    help="Conflict-aware batch updates for user records",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]batchops[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Validate, plan and run batches of user record updates.
    """
    configure_logging(get_settings())


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(code=2) from e


def _load_operations(path: Path) -> list[Operation]:
    raw = _load_json(path)
    if isinstance(raw, dict):
        raw = raw.get("operations", [])
    try:
        return [Operation.model_validate(item) for item in raw]
    except ValueError as e:
        console.print(f"[red]Invalid operations in {path}: {e}[/red]")
        raise typer.Exit(code=2) from e


def _print_conflicts(conflicts: list[Conflict]) -> None:
    table = Table(title="Conflicts")
    table.add_column("#", style="cyan")
    table.add_column("Type", style="bold")
    table.add_column("Operations")
    table.add_column("Resolutions")
    table.add_column("Message", style="dim")

    for index, conflict in enumerate(conflicts):
        table.add_row(
            str(index),
            conflict.conflict_type.value,
            ", ".join(str(i) for i in conflict.indices),
            ", ".join(r.value for r in conflict.resolutions),
            conflict.message,
        )

    console.print(table)


def _parse_resolution(value: str) -> tuple[int, str]:
    index, _, resolution = value.partition(":")
    if not index.isdigit() or not resolution:
        raise typer.BadParameter(f"Expected INDEX:RESOLUTION, got '{value}'")
    return int(index), resolution


@app.command()
def check(
    operations_file: Path = typer.Argument(..., help="JSON file with operations"),
) -> None:
    """
    Detect conflicts between the operations in a file.

    Exits with code 1 when conflicts are found.
    """
    operations = _load_operations(operations_file)
    conflicts = detect_conflicts(operations)

    if not conflicts:
        console.print(f"[green]No conflicts among {len(operations)} operations[/green]")
        return

    _print_conflicts(conflicts)
    raise typer.Exit(code=1)


@app.command()
def plan(
    operations_file: Path = typer.Argument(..., help="JSON file with operations"),
) -> None:
    """
    Show the dependency-ordered execution plan.
    """
    operations = _load_operations(operations_file)
    scheduler = DependencyScheduler()

    try:
        order = scheduler.schedule(operations)
        waves = scheduler.waves(operations)
    except CircularDependencyError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e

    wave_of = {target: n for n, wave in enumerate(waves) for target in wave}

    table = Table(title="Execution Plan")
    table.add_column("Step", style="cyan")
    table.add_column("Target", style="bold")
    table.add_column("Wave")
    table.add_column("Depends On")
    table.add_column("Fields")

    for step, op in enumerate(order, 1):
        table.add_row(
            str(step),
            op.target_id,
            str(wave_of.get(op.target_id, "")),
            ", ".join(op.depends_on) or "-",
            ", ".join(op.data) or "-",
        )

    console.print(table)


@app.command()
def run(
    operations_file: Path = typer.Argument(..., help="JSON file with operations"),
    records: Path = typer.Option(
        ...,
        "--records",
        "-r",
        help="JSON object of user records keyed by ID",
    ),
    transactional: bool | None = typer.Option(
        None,
        "--transactional/--no-transactional",
        help="Stop on the first failed operation",
    ),
    retry_count: int | None = typer.Option(
        None,
        "--retry-count",
        min=0,
        help="Retries per operation",
    ),
    parallel: bool | None = typer.Option(
        None,
        "--parallel/--sequential",
        help="Ignore dependencies and use input order",
    ),
    resolve: list[str] = typer.Option(
        [],
        "--resolve",
        help="Resolve a conflict before running, as INDEX:RESOLUTION (repeatable)",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the run result and final records as JSON",
    ),
) -> None:
    """
    Execute a batch against an in-memory copy of the records.
    """
    operations = _load_operations(operations_file)
    store = InMemoryUserStore(_load_json(records))
    settings = get_settings()
    options = BatchOptions.from_settings(
        settings,
        transactional=transactional,
        retry_count=retry_count,
        parallel_ops=parallel,
    )

    manager = BatchOperationManager(store.apply_update, settings=settings)
    manager.add_operations(operations)

    resolver_steps = [_parse_resolution(value) for value in resolve]
    for index, resolution in resolver_steps:
        try:
            manager.resolve_conflict(index, resolution)
        except BatchOperationError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(code=2) from e

    if manager.conflicts:
        _print_conflicts(manager.conflicts)
        console.print("[red]Resolve conflicts before running (see --resolve)[/red]")
        raise typer.Exit(code=1)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Applying updates...", total=100)
        manager.on_progress = lambda percent: progress.update(task, completed=percent)

        async def execute() -> None:
            async with manager:
                await manager.execute_batch(options)

        anyio.run(execute)

    table = Table(title="Results")
    table.add_column("Target", style="bold")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Error", style="dim")

    for result in manager.results:
        table.add_row(
            result.target_id,
            "[green]ok[/green]" if result.success else "[red]failed[/red]",
            str(result.attempts),
            str(result.error) if result.error else "",
        )

    console.print(table)

    if output:
        output.write_text(
            json.dumps(
                {
                    "run": manager.run.to_dict(),
                    "records": store.all(),
                },
                indent=2,
                default=str,
            )
        )
        console.print(f"[dim]Wrote {output}[/dim]")

    if manager.status != BatchStatus.SUCCESS:
        message = manager.error_details.message if manager.error_details else "Batch failed"
        console.print(f"[bold red]{message}[/bold red]")
        raise typer.Exit(code=1)

    console.print("[bold green]Batch completed successfully[/bold green]")


if __name__ == "__main__":
    app()
