"""tickwork config command - show and validate configuration."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.syntax import Syntax

from tickwork.cli.error_handler import handle_errors
from tickwork.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage tickwork configuration.")
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


@app.command("show")
@handle_errors
def show_config(
    config_file: Optional[Path] = CONFIG_OPTION,
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
) -> None:
    """Show the effective configuration.

    Example:
        tickwork config show
        tickwork config show --format yaml
    """
    from tickwork.config import config_to_dict, export_config_json, export_config_yaml, load_config

    config = load_config(config_file)

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config), "yaml", theme="monokai"))
        return
    if format == "json":
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return
    if format != "table":
        console.print(f"[red]Error:[/red] Unknown format: {format}")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    data = config_to_dict(config)
    console.print(f"[bold]Config directory:[/bold] {data.pop('config_dir')}")
    console.print()

    for section, values in data.items():
        table = Table(title=section.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for key, value in values.items():
            if isinstance(value, list):
                value = ", ".join(value) or "None"
            table.add_row(key, "" if value is None else str(value))

        console.print(table)
        console.print()


@app.command("validate")
@handle_errors
def validate_config(
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Validate the effective configuration.

    Exits with the configuration error code if any check fails.

    Example:
        tickwork config validate
    """
    from tickwork.config import load_config, validate_config as do_validate

    config = load_config(config_file)

    console.print("[bold]Validating configuration...[/bold]")

    errors = do_validate(config)
    all_passed = True

    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} {escape(str(error))}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
