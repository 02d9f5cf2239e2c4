"""tickwork run command - host the schedule engine in the foreground."""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from tickwork.cli.error_handler import handle_errors
from tickwork.cli.log_file import add_file_handler
from tickwork.config import LoggingConfig, TickworkConfig

app = typer.Typer(help="Run discovered tasks on their schedules.")
console = Console()


def load_run_config(
    config_file: Optional[Path] = None,
    packages: Optional[List[str]] = None,
    task_dirs: Optional[List[Path]] = None,
) -> TickworkConfig:
    """Load configuration and merge discovery options from the command line."""
    from tickwork.config import load_config

    config = load_config(config_file)

    for package in packages or []:
        if package not in config.discovery.packages:
            config.discovery.packages.append(package)
    for task_dir in task_dirs or []:
        if task_dir not in config.discovery.task_dirs:
            config.discovery.task_dirs.append(task_dir)

    return config


def _add_file_logging(config: LoggingConfig) -> None:
    """Also log to the configured file, at the configured level."""
    if config.file is None:
        return

    add_file_handler(config.file, logging.getLevelName(config.level.upper()), config.format)


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    package: Optional[List[str]] = typer.Option(
        None,
        "--package",
        "-p",
        help="Package to search for tasks (repeatable).",
    ),
    task_dir: Optional[List[Path]] = typer.Option(
        None,
        "--task-dir",
        "-d",
        help="Directory of task files (repeatable).",
        file_okay=False,
        dir_okay=True,
    ),
    immediate: bool = typer.Option(
        False,
        "--immediate",
        help="Request an immediate stop from every task on shutdown.",
    ),
) -> None:
    """Start the task host and run until SIGINT or SIGTERM.

    Every discovered task with can_start set is scheduled; runs already
    in progress finish before the process exits.

    Example:
        tickwork run --package myapp.tasks
        tickwork run --config tickwork.toml --task-dir ./tasks
    """
    from tickwork.host.service import run_host

    config = load_run_config(config_file, package, task_dir)
    _add_file_logging(config.logging)

    console.print("[bold green]Starting tickwork host...[/bold green]")
    if config.discovery.packages:
        console.print(f"Packages: {', '.join(config.discovery.packages)}")
    if config.discovery.task_dirs:
        console.print(f"Task directories: {', '.join(str(p) for p in config.discovery.task_dirs)}")

    asyncio.run(run_host(config, {"immediate": immediate}))

    console.print("[yellow]Host stopped[/yellow]")
