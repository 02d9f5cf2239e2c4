"""Schedule engine running each task on its own self-renewing timer.

The ScheduleEngine keeps one ScheduleEntry per scheduled task. Each entry
is a one-shot APScheduler job whose id is the task name; when it expires
the engine runs the task through its TaskRunner and, once the run has
completed, inserts a fresh entry ``interval_seconds`` later.

Timer expiry is handled on the APScheduler thread pool, so different
tasks run in parallel while runs of one task are serialized by its
runner's lock.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from tickwork.config import SchedulerConfig
from tickwork.exceptions import (
    ConfigurationError,
    LogSinkError,
    TaskNotFoundError,
    TickworkError,
    WorkError,
)
from tickwork.tasks.base import LogLevel, Task
from tickwork.tasks.registry import TaskRegistry, get_registry
from tickwork.tasks.runner import LogHandler, TaskRunner

logger = logging.getLogger(__name__)


class EntryState(Enum):
    """Scheduling state of a task owned by the engine."""

    UNSCHEDULED = auto()  # can_start is false, never gets an entry
    PENDING = auto()  # Waiting for its entry to expire
    FIRING = auto()  # Entry expired, run in progress
    STOPPED = auto()  # No further entries will be inserted


@dataclass(frozen=True)
class ScheduleEntry:
    """When a task fires next.

    Attributes:
        task_name: Name of the task
        runner: Runner the expiry handler will invoke
        expiry: Time the entry expires (UTC)
    """

    task_name: str
    runner: TaskRunner
    expiry: datetime


@dataclass
class _TaskSlot:
    """Everything the engine tracks for one task."""

    task: Task
    runner: TaskRunner
    entry: Optional[ScheduleEntry] = None
    state: EntryState = EntryState.UNSCHEDULED
    run_count: int = 0
    error_count: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None


class ScheduleEngine:
    """Runs discovered tasks on their intervals until shut down.

    Example:
        engine = ScheduleEngine(SchedulerConfig(), registry=registry)
        engine.register_tasks()
        engine.start()

        # Force a run outside the schedule
        engine.run_task("PurgeSessions")

        engine.shutdown()
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        registry: Optional[TaskRegistry] = None,
        lifecycle: Optional[Any] = None,
        log_handlers: Optional[Iterable[LogHandler]] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Scheduler configuration
            registry: Registry used by register_tasks() and run_task()
                (default: the process-wide registry)
            lifecycle: Hosting lifecycle every runner registers with
            log_handlers: Log handlers for every runner (default: stdlib
                logging)
        """
        self._config = config or SchedulerConfig()
        self._registry = registry
        self._lifecycle = lifecycle
        self._log_handlers = list(log_handlers) if log_handlers is not None else None

        self._slots: Dict[str, _TaskSlot] = {}
        self._lock = threading.RLock()
        self._stopping = False

        self._scheduler = self._create_scheduler()
        self._setup_listeners()

    @property
    def registry(self) -> TaskRegistry:
        if self._registry is None:
            self._registry = get_registry()
        return self._registry

    @property
    def is_running(self) -> bool:
        """Check if the timer substrate is running."""
        return bool(self._scheduler.running)

    @property
    def is_stopping(self) -> bool:
        return self._stopping

    @property
    def tasks(self) -> List[Task]:
        """Get every task owned by the engine, scheduled or not."""
        with self._lock:
            return [slot.task for slot in self._slots.values()]

    @property
    def entries(self) -> List[ScheduleEntry]:
        """Get the live schedule entries."""
        with self._lock:
            return [slot.entry for slot in self._slots.values() if slot.entry is not None]

    def get_entry(self, name: str) -> Optional[ScheduleEntry]:
        """Get the live entry for a task, if it has one."""
        with self._lock:
            slot = self._slots.get(name)
            return slot.entry if slot is not None else None

    def state_of(self, name: str) -> EntryState:
        """Get the scheduling state of a task.

        Raises:
            TaskNotFoundError: If the engine does not own the task
        """
        with self._lock:
            slot = self._slots.get(name)
            if slot is None:
                raise TaskNotFoundError(name)
            return slot.state

    def register_tasks(self) -> List[Task]:
        """Discover every available task and schedule the eligible ones.

        Returns:
            The discovered tasks
        """
        tasks = self.registry.discover_all()
        self.schedule_all(tasks)
        return tasks

    def schedule_all(self, tasks: Iterable[Task]) -> None:
        """Take ownership of tasks and insert an entry for each startable one.

        Every task is validated before anything is scheduled.

        Args:
            tasks: Tasks to own

        Raises:
            ConfigurationError: If a task declares an invalid interval or
                its name is already taken
        """
        tasks = list(tasks)

        with self._lock:
            if self._stopping:
                raise TickworkError("Cannot schedule tasks on an engine that was shut down")

            names = set(self._slots)
            for task in tasks:
                self._validate(task)
                if task.name in names:
                    raise ConfigurationError(
                        f"Duplicate task name: {task.name}",
                        details={"task": task.name},
                    )
                names.add(task.name)

            for task in tasks:
                runner = TaskRunner(
                    task,
                    lifecycle=self._lifecycle,
                    handlers=self._log_handlers,
                )
                slot = _TaskSlot(task=task, runner=runner)
                self._slots[task.name] = slot

                if not task.can_start:
                    logger.debug(f"Task {task.name} cannot start, not scheduled")
                    continue

                if task.can_kick_start:
                    delay = self._config.kick_start_delay
                else:
                    delay = task.interval_seconds
                self._insert(slot, delay)

        logger.info(f"Scheduled {len(self.entries)} of {len(tasks)} tasks")

    def start(self) -> None:
        """Start the timer substrate."""
        if self._stopping:
            raise TickworkError("Cannot start an engine that was shut down")
        if self._scheduler.running:
            return

        self._scheduler.start()
        logger.info("Schedule engine started")

    def shutdown(self, immediate: bool = False, wait: Optional[bool] = None) -> None:
        """Stop every runner and drop every remaining entry.

        Runs already in progress finish; no task fires afterwards. A log
        handler failing on one runner's stop event does not keep the other
        runners or the substrate running.

        Args:
            immediate: Passed to each runner's request_stop()
            wait: Wait for running expiry handlers to return
                (default: SchedulerConfig.shutdown_wait)

        Raises:
            LogSinkError: The first log handler failure, once the engine
                is fully stopped
        """
        with self._lock:
            if self._stopping:
                return
            self._stopping = True
            runners = [slot.runner for slot in self._slots.values()]

        logger.info("Stopping schedule engine...")

        sink_error: Optional[LogSinkError] = None
        try:
            # request_stop() waits for in-flight runs, whose handlers need the
            # engine lock to finish
            for runner in runners:
                if runner.shutting_down:
                    continue
                try:
                    runner.request_stop(immediate)
                except LogSinkError as e:
                    logger.error(f"Log handler failed while stopping {runner.name}: {e}")
                    if sink_error is None:
                        sink_error = e
        finally:
            with self._lock:
                for slot in self._slots.values():
                    if slot.entry is not None:
                        self._remove_job(slot.task.name)
                        slot.entry = None
                    if slot.state is EntryState.PENDING:
                        slot.state = EntryState.STOPPED

            if self._scheduler.running:
                self._scheduler.shutdown(
                    wait=self._config.shutdown_wait if wait is None else wait
                )

        logger.info("Schedule engine stopped")

        if sink_error is not None:
            raise sink_error

    def run_task(self, name: str) -> bool:
        """Run one task now, outside of its schedule.

        A task owned by the engine runs through its own runner, so the
        run never overlaps a scheduled one. Any other task is looked up
        in the registry and run once. The task's schedule is untouched.

        Args:
            name: Task name

        Returns:
            True if do_work() ran, False if the task is shutting down

        Raises:
            TaskNotFoundError: If no task has that name
            WorkError: If do_work() raises
        """
        with self._lock:
            slot = self._slots.get(name)

        if slot is not None:
            runner = slot.runner
        else:
            task = self.registry.find_by_name(name)
            if task is None:
                raise TaskNotFoundError(name)
            runner = TaskRunner(task, handlers=self._log_handlers)

        logger.info(f"Running task {name} on demand")

        try:
            ran = runner.run()
        except LogSinkError:
            raise
        except Exception as e:
            if slot is not None:
                with self._lock:
                    slot.error_count += 1
                    slot.last_error = str(e)
            runner.emit(LogLevel.ERROR, f"Task failed: {e}", error=e)
            raise WorkError(name, e) from e

        if slot is not None:
            with self._lock:
                slot.last_run = datetime.now(timezone.utc)
                if ran:
                    slot.run_count += 1

        return ran

    def get_status(self) -> Dict[str, Any]:
        """Get engine status.

        Returns:
            Dictionary with engine status information
        """
        with self._lock:
            tasks = [
                {
                    "name": name,
                    "state": slot.state.name.lower(),
                    "interval_seconds": slot.task.interval_seconds,
                    "next_run": slot.entry.expiry.isoformat() if slot.entry else None,
                    "last_run": slot.last_run.isoformat() if slot.last_run else None,
                    "run_count": slot.run_count,
                    "error_count": slot.error_count,
                    "last_error": slot.last_error,
                }
                for name, slot in self._slots.items()
            ]

        return {
            "running": self.is_running,
            "stopping": self._stopping,
            "total_tasks": len(tasks),
            "scheduled_tasks": sum(1 for t in tasks if t["state"] == "pending"),
            "tasks": tasks,
        }

    def _validate(self, task: Task) -> None:
        interval = task.interval_seconds
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ConfigurationError(
                f"Task {task.name} must declare a positive integer interval_seconds, "
                f"got {interval!r}",
                details={"task": task.name},
            )

    def _insert(self, slot: _TaskSlot, delay: float) -> None:
        """Insert the next entry for a task. Caller holds the engine lock."""
        expiry = datetime.now(timezone.utc) + timedelta(seconds=delay)

        self._scheduler.add_job(
            func=self._on_expiry,
            trigger=DateTrigger(run_date=expiry),
            id=slot.task.name,
            name=slot.task.name,
            args=[slot.task.name],
            replace_existing=True,
        )

        slot.entry = ScheduleEntry(task_name=slot.task.name, runner=slot.runner, expiry=expiry)
        slot.state = EntryState.PENDING
        logger.debug(f"Task {slot.task.name} next runs at {expiry.isoformat()}")

    def _remove_job(self, name: str) -> None:
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            # Entry already expired and its handler is running
            logger.debug(f"No pending job for task {name}")

    def _on_expiry(self, name: str) -> None:
        """Expiry handler: run the task, then reinsert its entry."""
        with self._lock:
            slot = self._slots.get(name)
            if slot is None or slot.state is not EntryState.PENDING:
                logger.debug(f"Ignoring stale entry for task {name}")
                return
            slot.state = EntryState.FIRING
            slot.entry = None

        try:
            ran = slot.runner.run()
        except LogSinkError as e:
            self._stop_after_failure(slot, e)
            raise
        except Exception as e:
            self._stop_after_failure(slot, e)
            logger.error(f"Task {name} failed, no further runs scheduled: {e}")
            slot.runner.emit(LogLevel.ERROR, f"Task failed: {e}", error=e)
            raise WorkError(name, e) from e

        with self._lock:
            slot.last_run = datetime.now(timezone.utc)
            if ran:
                slot.run_count += 1

            if self._stopping or slot.runner.shutting_down:
                slot.state = EntryState.STOPPED
                logger.debug(f"Task {name} stopped")
                return

            self._insert(slot, slot.task.interval_seconds)

    def _stop_after_failure(self, slot: _TaskSlot, error: Exception) -> None:
        with self._lock:
            slot.state = EntryState.STOPPED
            slot.error_count += 1
            slot.last_error = str(error)
            slot.last_run = datetime.now(timezone.utc)

    def _create_scheduler(self) -> BackgroundScheduler:
        """Create and configure the APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": ThreadPoolExecutor(self._config.max_workers)}

        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": None,  # A late entry still fires
        }

        return BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self._config.timezone,
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Expiry handler for task {event.job_id} raised: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Task {event.job_id} missed its scheduled run")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)
