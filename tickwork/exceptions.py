"""Exceptions raised by the tickwork scheduling engine.

Every error carries the CLI exit code it maps to, so commands can
report failures consistently through ``handle_errors``.
"""

from typing import Any

from tickwork.cli.exit_codes import ExitCode


class TickworkError(Exception):
    """Base exception for tickwork.

    Attributes:
        message: Error message
        exit_code: Exit code to use when a CLI command fails with this error
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(TickworkError):
    """Invalid configuration or task definition.

    Raised before anything is scheduled, e.g. for a task that
    declares a non-positive interval or a duplicate task name.
    """

    exit_code = ExitCode.CONFIGURATION_ERROR


class DiscoveryError(TickworkError):
    """A module or file could not be introspected during discovery.

    Discovery treats this as non-fatal: the unit is skipped and the
    scan continues.
    """

    exit_code = ExitCode.DISCOVERY_ERROR

    def __init__(self, message: str, unit: str | None = None) -> None:
        super().__init__(message, details={"unit": unit} if unit else None)
        self.unit = unit


class WorkError(TickworkError):
    """A task's ``do_work()`` raised.

    The underlying exception is available as ``__cause__`` and ``cause``.
    """

    exit_code = ExitCode.WORK_ERROR

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(
            f"Task '{task_name}' failed: {cause}",
            details={"task": task_name},
        )
        self.task_name = task_name
        self.cause = cause


class LogSinkError(TickworkError):
    """A log handler raised while a runner was emitting an event."""

    exit_code = ExitCode.LOG_SINK_ERROR


class TaskNotFoundError(TickworkError):
    """No task with the requested name could be found."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, task_name: str) -> None:
        super().__init__(f"Task not found: {task_name}")
        self.task_name = task_name
