"""Global exception handling for tickwork commands.

Commands wrapped with ``handle_errors`` report a ``TickworkError`` as a
short message on stderr and exit with the error's exit code.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from tickwork.cli.exit_codes import ExitCode
from tickwork.exceptions import TickworkError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _report(error: TickworkError) -> None:
    logger.error(
        f"{type(error).__name__}: {error.message}",
        extra={"exit_code": error.exit_code, "details": error.details},
    )

    console.print(f"[red]Error:[/red] {error.message}")
    for key, value in error.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - TickworkError subclasses: print the message, exit with its code
    - KeyboardInterrupt: exit with code 130
    - Other exceptions: log the traceback, exit with code 1

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Invalid config")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except TickworkError as e:
            _report(e)
            raise typer.Exit(code=e.exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
