"""Base class for recurring tasks.

Tasks are the units of work the scheduling engine runs. Each task
declares how often it runs and implements do_work().
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Optional, cast

if TYPE_CHECKING:
    from tickwork.tasks.runner import TaskRunner


class LogLevel(Enum):
    """Severity of an event emitted on a runner's log channel."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    def to_logging(self) -> int:
        """Map this level onto the stdlib logging level."""
        return _LOGGING_LEVELS[self]


_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}

# Guards creation of private runners for unbound tasks
_runner_lock = threading.Lock()


class Task(ABC):
    """Abstract base class for recurring tasks.

    Subclasses set the scheduling attributes as class attributes and
    implement do_work(). The engine instantiates every concrete subclass
    with its no-argument constructor.

    Attributes:
        name: Unique task name (defaults to the class name)
        interval_seconds: Seconds between the end of one run and the next
            run; must be a positive integer
        can_kick_start: Run the first time almost immediately instead of
            waiting a full interval
        can_start: Whether the task is scheduled at all

    Example:
        class PurgeSessions(Task):
            interval_seconds = 300
            can_kick_start = True

            def do_work(self) -> None:
                sessions.purge_expired()
    """

    name: str = ""
    interval_seconds: int = 0
    can_kick_start: bool = False
    can_start: bool = True

    _runner: Optional["TaskRunner"] = None

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__ or not cls.__dict__["name"]:
            cls.name = cls.__name__

    @abstractmethod
    def do_work(self) -> None:
        """Do the work. Called from run() while holding the runner lock."""

    @property
    def runner(self) -> "TaskRunner":
        """The runner guarding this task.

        A task scheduled by an engine is bound to the engine's runner.
        A task used standalone gets a private runner on first access.
        """
        with _runner_lock:
            if self._runner is None:
                from tickwork.tasks.runner import TaskRunner

                TaskRunner(self)
            return cast("TaskRunner", self._runner)

    def bind_runner(self, runner: "TaskRunner") -> None:
        """Attach the runner that serializes this task's runs."""
        self._runner = runner

    def run(self) -> bool:
        """Run the task through its runner.

        Returns:
            True if do_work() ran, False if the runner is shutting down
        """
        return self.runner.run()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"interval_seconds={self.interval_seconds!r}, "
            f"can_start={self.can_start!r}, can_kick_start={self.can_kick_start!r})"
        )
