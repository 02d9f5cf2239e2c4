"""tickwork - in-process recurring task scheduler."""

__app_name__ = "tickwork"
__version__ = "0.3.0"

from tickwork.exceptions import (
    ConfigurationError,
    DiscoveryError,
    LogSinkError,
    TaskNotFoundError,
    TickworkError,
    WorkError,
)
from tickwork.host import HostingLifecycle, TaskHost, run_host
from tickwork.scheduler import EntryState, ScheduleEngine, ScheduleEntry
from tickwork.tasks import (
    LogEvent,
    LogLevel,
    Task,
    TaskRegistry,
    TaskRunner,
    register,
)

__all__ = [
    "__app_name__",
    "__version__",
    "ConfigurationError",
    "DiscoveryError",
    "EntryState",
    "HostingLifecycle",
    "LogEvent",
    "LogLevel",
    "LogSinkError",
    "ScheduleEngine",
    "ScheduleEntry",
    "Task",
    "TaskHost",
    "TaskNotFoundError",
    "TaskRegistry",
    "TaskRunner",
    "TickworkError",
    "WorkError",
    "register",
    "run_host",
]
