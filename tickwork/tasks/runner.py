"""Execution wrapper enforcing non-overlap and shutdown gating.

A TaskRunner owns the lock for one task. Scheduled fires and on-demand
runs of the same task both go through run(), so their do_work() calls
never overlap. request_stop() closes the gate for every future run.
"""

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional

from tickwork.exceptions import LogSinkError
from tickwork.tasks.base import LogLevel, Task

if TYPE_CHECKING:
    from tickwork.host.lifecycle import HostingLifecycle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEvent:
    """An event emitted on a runner's log channel.

    Attributes:
        source: The task the event is about
        level: Event severity
        message: Event message
        error: Underlying exception, if any
    """

    source: Task
    level: LogLevel
    message: str
    error: Optional[BaseException] = None


LogHandler = Callable[[LogEvent], None]


def logging_sink(event: LogEvent) -> None:
    """Default log handler: forward the event to stdlib logging."""
    task_logger = logging.getLogger(f"tickwork.tasks.{event.source.name}")
    task_logger.log(
        event.level.to_logging(),
        event.message,
        exc_info=event.error,
    )


class TaskRunner:
    """Wraps a task with a mutual-exclusion lock and a shutdown flag.

    At most one do_work() call per task executes at any time. Once
    request_stop() returns, no later run() executes do_work(); a run
    already past the gate finishes first, because request_stop() has
    to take the same lock to flip the flag.

    Example:
        runner = TaskRunner(task, lifecycle=lifecycle)
        runner.add_log_handler(my_handler)

        runner.run()                      # calls task.do_work()
        runner.request_stop(immediate=False)
        runner.run()                      # returns False, no work done
    """

    def __init__(
        self,
        task: Task,
        lifecycle: Optional["HostingLifecycle"] = None,
        handlers: Optional[Iterable[LogHandler]] = None,
    ) -> None:
        """Initialize the runner and bind it to its task.

        Args:
            task: The task to wrap
            lifecycle: Hosting lifecycle to register with, if any
            handlers: Log handlers (default: forward to stdlib logging)
        """
        self._task = task
        self._lock = threading.Lock()
        self._shutting_down = False
        self._lifecycle = lifecycle
        self._handlers: List[LogHandler] = (
            list(handlers) if handlers is not None else [logging_sink]
        )

        task.bind_runner(self)
        if lifecycle is not None:
            lifecycle.register(self)

    @property
    def task(self) -> Task:
        return self._task

    @property
    def name(self) -> str:
        return self._task.name

    @property
    def shutting_down(self) -> bool:
        """True once request_stop() has been called. Never reset."""
        return self._shutting_down

    @property
    def handlers(self) -> List[LogHandler]:
        return list(self._handlers)

    def add_log_handler(self, handler: LogHandler) -> None:
        """Subscribe a handler to this runner's log channel."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    def remove_log_handler(self, handler: LogHandler) -> bool:
        """Unsubscribe a handler.

        Returns:
            True if the handler was subscribed
        """
        if handler in self._handlers:
            self._handlers.remove(handler)
            return True
        return False

    def run(self) -> bool:
        """Run the task once unless the runner is shutting down.

        Returns:
            True if do_work() ran, False if the gate was closed

        Raises:
            LogSinkError: If a log handler fails
            Exception: Whatever do_work() raises
        """
        self.emit(LogLevel.INFO, "Run task")

        with self._lock:
            if self._shutting_down:
                return False
            self._task.do_work()
            return True

    def request_stop(self, immediate: bool = False) -> None:
        """Close the gate for all future runs.

        Blocks until an in-flight run releases the lock, then flips the
        shutdown flag and unregisters from the hosting lifecycle. The gate
        closes even when a log handler fails on the stop event.

        Args:
            immediate: Whether the host wants an immediate stop. Logged
                only; a run in progress is never interrupted.

        Raises:
            LogSinkError: If a log handler fails, after the gate is closed
        """
        try:
            self.emit(LogLevel.INFO, f"Stop: immediate={'true' if immediate else 'false'}")
        finally:
            with self._lock:
                self._shutting_down = True

            if self._lifecycle is not None:
                self._lifecycle.unregister(self)

    def emit(
        self,
        level: LogLevel,
        message: str,
        error: Optional[BaseException] = None,
    ) -> None:
        """Send an event to every subscribed log handler.

        Raises:
            LogSinkError: If a handler raises. The failure is traced to the
                module logger before it is re-raised.
        """
        event = LogEvent(source=self._task, level=level, message=message, error=error)

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Log handler failed for task {self.name}: {e}")
                raise LogSinkError(
                    f"Log handler failed: {e}",
                    details={"task": self.name},
                ) from e

    def __repr__(self) -> str:
        return f"TaskRunner(task={self.name!r}, shutting_down={self._shutting_down})"
