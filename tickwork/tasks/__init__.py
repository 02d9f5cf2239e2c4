"""Task capability, execution wrapper and discovery.

A Task declares its interval and implements do_work(). A TaskRunner
serializes its runs and gates them on shutdown. The TaskRegistry finds
every concrete task available to the process.
"""

from tickwork.tasks.base import LogLevel, Task
from tickwork.tasks.registry import (
    TaskRegistry,
    get_registry,
    register,
    reset_registry,
    unregister,
)
from tickwork.tasks.runner import LogEvent, LogHandler, TaskRunner, logging_sink

__all__ = [
    "LogEvent",
    "LogHandler",
    "LogLevel",
    "Task",
    "TaskRegistry",
    "TaskRunner",
    "get_registry",
    "logging_sink",
    "register",
    "reset_registry",
    "unregister",
]
