"""tickwork tasks command - inspect and run tasks on demand."""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from tickwork.cli.error_handler import handle_errors
from tickwork.cli.run import load_run_config

app = typer.Typer(help="Inspect discovered tasks and run them on demand.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
    exists=True,
    file_okay=True,
    dir_okay=False,
    resolve_path=True,
)
PACKAGE_OPTION = typer.Option(
    None,
    "--package",
    "-p",
    help="Package to search for tasks (repeatable).",
)
TASK_DIR_OPTION = typer.Option(
    None,
    "--task-dir",
    "-d",
    help="Directory of task files (repeatable).",
    file_okay=False,
    dir_okay=True,
)


@app.command("list")
@handle_errors
def list_tasks(
    config_file: Optional[Path] = CONFIG_OPTION,
    package: Optional[List[str]] = PACKAGE_OPTION,
    task_dir: Optional[List[Path]] = TASK_DIR_OPTION,
) -> None:
    """List every task that discovery finds.

    Example:
        tickwork tasks list --package myapp.tasks
    """
    from tickwork.tasks.registry import TaskRegistry

    config = load_run_config(config_file, package, task_dir)
    tasks = TaskRegistry.from_config(config.discovery).discover_all()

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title="Tasks")
    table.add_column("Name", style="cyan")
    table.add_column("Interval", justify="right")
    table.add_column("Starts", justify="center")
    table.add_column("Kick-start", justify="center")
    table.add_column("Module", style="dim")

    for task in tasks:
        table.add_row(
            task.name,
            f"{task.interval_seconds}s",
            "[green]✓[/green]" if task.can_start else "[red]✗[/red]",
            "[green]✓[/green]" if task.can_kick_start else "",
            type(task).__module__,
        )

    console.print(table)
    console.print(f"\n[dim]{len(tasks)} tasks[/dim]")


@app.command("run")
@handle_errors
def run_task(
    name: str = typer.Argument(..., help="Name of the task to run."),
    config_file: Optional[Path] = CONFIG_OPTION,
    package: Optional[List[str]] = PACKAGE_OPTION,
    task_dir: Optional[List[Path]] = TASK_DIR_OPTION,
) -> None:
    """Run one task once, outside of any schedule.

    Example:
        tickwork tasks run PurgeSessions --package myapp.tasks
    """
    from tickwork.scheduler.engine import ScheduleEngine
    from tickwork.tasks.registry import TaskRegistry

    config = load_run_config(config_file, package, task_dir)
    registry = TaskRegistry.from_config(config.discovery)
    engine = ScheduleEngine(config.scheduler, registry=registry)

    console.print(f"Running task [cyan]{name}[/cyan]...")

    if engine.run_task(name):
        console.print(f"[green]✓[/green] Task {name} completed")
    else:
        console.print(f"[yellow]![/yellow] Task {name} is shutting down and did not run")
