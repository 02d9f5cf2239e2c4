"""Tests for the schedule engine."""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from tickwork.config import SchedulerConfig
from tickwork.exceptions import (
    ConfigurationError,
    LogSinkError,
    TaskNotFoundError,
    TickworkError,
    WorkError,
)
from tickwork.host.lifecycle import HostingLifecycle
from tickwork.scheduler.engine import EntryState, ScheduleEngine, ScheduleEntry
from tickwork.tasks.base import LogLevel, Task
from tickwork.tasks.registry import TaskRegistry
from tickwork.tasks.runner import LogEvent


class FunctionTask(Task):
    """Task whose attributes and work are set per instance."""

    interval_seconds = 60

    def __init__(
        self,
        name: str = "FunctionTask",
        interval_seconds: object = 60,
        can_kick_start: bool = False,
        can_start: bool = True,
        work: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds  # type: ignore[assignment]
        self.can_kick_start = can_kick_start
        self.can_start = can_start
        self.work = work
        self.calls = 0
        self.finished_at: Optional[datetime] = None
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def do_work(self) -> None:
        with self._guard:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            call = self.calls
        try:
            if self.work is not None:
                self.work(call)
        finally:
            with self._guard:
                self.active -= 1
            self.finished_at = datetime.now(timezone.utc)


class OnDemandOnly(Task):
    interval_seconds = 60
    runs = 0

    def do_work(self) -> None:
        type(self).runs += 1


def fail_first(call: int) -> None:
    if call == 1:
        raise RuntimeError("first run fails")


def sleep_for(seconds: float) -> Callable[[int], None]:
    return lambda call: time.sleep(seconds)


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry(scan_loaded_modules=False, use_entry_points=False, include_registered=False)


@pytest.fixture
def events() -> List[LogEvent]:
    return []


@pytest.fixture
def make_engine(registry: TaskRegistry, events: List[LogEvent]):
    """Build engines with a short kick-start delay and shut them down afterwards."""
    engines: List[ScheduleEngine] = []

    def _make(kick_start_delay: float = 0.05, **kwargs) -> ScheduleEngine:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("log_handlers", [events.append])
        engine = ScheduleEngine(
            SchedulerConfig(kick_start_delay=kick_start_delay, max_workers=4),
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.shutdown(wait=True)


def seconds_until(entry: ScheduleEntry) -> float:
    return (entry.expiry - datetime.now(timezone.utc)).total_seconds()


class TestScheduleAll:
    """Tests for ScheduleEngine.schedule_all()."""

    def test_cannot_start_gets_no_entry(self, make_engine) -> None:
        """Test that can_start=False never creates an entry."""
        engine = make_engine()
        engine.schedule_all([FunctionTask("Off", can_start=False, can_kick_start=True)])

        assert engine.get_entry("Off") is None
        assert engine.entries == []
        assert engine.state_of("Off") == EntryState.UNSCHEDULED
        assert [t.name for t in engine.tasks] == ["Off"]

    def test_kick_start_uses_short_delay(self, make_engine) -> None:
        """Test that kick-start tasks first fire after about one second."""
        engine = make_engine(kick_start_delay=1.0)
        engine.schedule_all([FunctionTask("Kick", interval_seconds=300, can_kick_start=True)])

        entry = engine.get_entry("Kick")
        assert entry is not None
        assert entry.task_name == "Kick"
        assert 0.5 < seconds_until(entry) <= 1.0
        assert engine.state_of("Kick") == EntryState.PENDING

    def test_interval_delay_without_kick_start(self, make_engine) -> None:
        """Test that other tasks first fire after a full interval."""
        engine = make_engine()
        engine.schedule_all([FunctionTask("Slow", interval_seconds=30)])

        entry = engine.get_entry("Slow")
        assert entry is not None
        assert 29.5 < seconds_until(entry) <= 30.0

    def test_entry_holds_task_runner(self, make_engine) -> None:
        """Test that the entry points at the runner bound to the task."""
        engine = make_engine()
        task = FunctionTask("Bound")
        engine.schedule_all([task])

        entry = engine.get_entry("Bound")
        assert entry is not None
        assert entry.runner is task.runner

    @pytest.mark.parametrize("interval", [0, -5, 1.5, "10", None, True])
    def test_invalid_interval_rejected(self, make_engine, interval: object) -> None:
        """Test that a bad interval fails before anything is scheduled."""
        engine = make_engine()
        tasks = [
            FunctionTask("Good", interval_seconds=10),
            FunctionTask("Bad", interval_seconds=interval),
        ]

        with pytest.raises(ConfigurationError) as exc_info:
            engine.schedule_all(tasks)

        assert exc_info.value.details == {"task": "Bad"}
        assert engine.entries == []
        assert engine.tasks == []

    def test_duplicate_name_rejected(self, make_engine) -> None:
        """Test that task names must be unique."""
        engine = make_engine()

        with pytest.raises(ConfigurationError, match="Duplicate task name"):
            engine.schedule_all([FunctionTask("Twin"), FunctionTask("Twin")])

        assert engine.entries == []

    def test_duplicate_across_calls_rejected(self, make_engine) -> None:
        """Test that a name cannot be scheduled twice."""
        engine = make_engine()
        engine.schedule_all([FunctionTask("Twin")])

        with pytest.raises(ConfigurationError):
            engine.schedule_all([FunctionTask("Twin")])

    def test_register_tasks_uses_registry(self, make_engine, registry: TaskRegistry) -> None:
        """Test the startup entry point discovers then schedules."""
        registry.add(lambda: FunctionTask("Discovered", interval_seconds=15))
        registry.add(lambda: FunctionTask("Dormant", can_start=False))
        engine = make_engine()

        tasks = engine.register_tasks()

        assert [t.name for t in tasks] == ["Discovered", "Dormant"]
        assert [e.task_name for e in engine.entries] == ["Discovered"]

    def test_runners_register_with_lifecycle(self, make_engine) -> None:
        """Test that every owned runner joins the hosting lifecycle."""
        lifecycle = HostingLifecycle()
        engine = make_engine(lifecycle=lifecycle)
        engine.schedule_all([FunctionTask("A"), FunctionTask("B", can_start=False)])

        assert len(lifecycle) == 2


class TestExpiry:
    """Tests for the expiry handler."""

    def test_fire_runs_task_and_reinserts(self, make_engine, wait_for) -> None:
        """Test that a fired entry is replaced by exactly one new entry."""
        engine = make_engine()
        task = FunctionTask("Tick", interval_seconds=30, can_kick_start=True)
        engine.schedule_all([task])
        engine.start()

        assert wait_for(lambda: engine.get_status()["tasks"][0]["run_count"] == 1)
        assert wait_for(lambda: engine.state_of("Tick") == EntryState.PENDING)

        entry = engine.get_entry("Tick")
        assert entry is not None
        assert 29.0 < seconds_until(entry) <= 30.0
        assert len(engine.entries) == 1
        assert task.calls == 1

    def test_next_expiry_counts_from_completion(self, make_engine) -> None:
        """Test that the next entry is measured from the end of the run."""
        engine = make_engine()
        task = FunctionTask("Long", interval_seconds=10, work=sleep_for(0.3))
        engine.schedule_all([task])

        started = datetime.now(timezone.utc)
        engine._on_expiry("Long")

        entry = engine.get_entry("Long")
        assert entry is not None
        assert task.finished_at is not None
        assert entry.expiry >= task.finished_at + timedelta(seconds=10)
        assert entry.expiry >= started + timedelta(seconds=10.3)

    def test_stale_expiry_is_ignored(self, make_engine) -> None:
        """Test that a handler for a task that is not pending does nothing."""
        engine = make_engine()
        task = FunctionTask("Off", can_start=False)
        engine.schedule_all([task])

        engine._on_expiry("Off")
        engine._on_expiry("Unknown")

        assert task.calls == 0

    def test_failed_run_stops_task(self, make_engine, events: List[LogEvent]) -> None:
        """Test that an error aborts reinsertion and surfaces as WorkError."""
        engine = make_engine()
        task = FunctionTask("C", interval_seconds=1, work=fail_first)
        engine.schedule_all([task])

        with pytest.raises(WorkError) as exc_info:
            engine._on_expiry("C")

        assert exc_info.value.task_name == "C"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert engine.state_of("C") == EntryState.STOPPED
        assert engine.get_entry("C") is None
        assert any(e.level == LogLevel.ERROR and e.error is not None for e in events)

        status = engine.get_status()["tasks"][0]
        assert status["error_count"] == 1
        assert status["last_error"] == "first run fails"

    def test_failed_task_gets_no_more_fires(self, make_engine, wait_for) -> None:
        """Test that a failing task stays unscheduled until run on demand."""
        engine = make_engine()
        task = FunctionTask("C", interval_seconds=1, can_kick_start=True, work=fail_first)
        other = FunctionTask("D", interval_seconds=30, can_kick_start=True)
        engine.schedule_all([task, other])
        engine.start()

        assert wait_for(lambda: engine.state_of("C") == EntryState.STOPPED)
        time.sleep(1.5)

        assert task.calls == 1
        assert engine.get_entry("C") is None
        assert other.calls == 1
        assert engine.state_of("D") == EntryState.PENDING

        assert engine.run_task("C") is True
        assert task.calls == 2
        assert engine.state_of("C") == EntryState.STOPPED

    def test_log_sink_failure_propagates(self, make_engine) -> None:
        """Test that a broken log sink is re-raised as-is."""

        def broken(event: LogEvent) -> None:
            raise RuntimeError("sink down")

        engine = make_engine(log_handlers=[broken])
        task = FunctionTask("Noisy")
        engine.schedule_all([task])

        with pytest.raises(LogSinkError):
            engine._on_expiry("Noisy")

        assert task.calls == 0
        assert engine.state_of("Noisy") == EntryState.STOPPED
        task.runner.remove_log_handler(broken)

    def test_stopped_runner_is_not_reinserted(self, make_engine) -> None:
        """Test that no work happens and no entry follows once stop was requested."""
        engine = make_engine()
        task = FunctionTask("Halt")
        engine.schedule_all([task])
        task.runner.run()

        task.runner.request_stop(immediate=False)
        engine._on_expiry("Halt")

        assert task.calls == 1
        assert engine.state_of("Halt") == EntryState.STOPPED
        assert engine.get_entry("Halt") is None
        assert engine.run_task("Halt") is False
        assert task.calls == 1

    def test_scenario_kick_start_and_disabled(self, make_engine) -> None:
        """Test A (kick-start) fires once and B (cannot start) never within two seconds."""
        engine = make_engine(kick_start_delay=1.0)
        a = FunctionTask("A", interval_seconds=5, can_kick_start=True)
        b = FunctionTask("B", interval_seconds=5, can_start=False)
        engine.schedule_all([a, b])
        engine.start()

        time.sleep(2)

        assert a.calls == 1
        assert b.calls == 0

    def test_tasks_fire_concurrently(self, make_engine, wait_for) -> None:
        """Test that a blocked task does not delay another task's fire."""
        release = threading.Event()
        engine = make_engine()
        blocked = FunctionTask("Blocked", can_kick_start=True, work=lambda call: release.wait(5))
        free = FunctionTask("Free", can_kick_start=True)
        engine.schedule_all([blocked, free])
        engine.start()

        try:
            assert wait_for(lambda: blocked.active == 1)
            assert wait_for(lambda: free.calls == 1)
            assert engine.state_of("Blocked") == EntryState.FIRING
        finally:
            release.set()


class TestRunTask:
    """Tests for ScheduleEngine.run_task()."""

    def test_run_owned_task(self, make_engine) -> None:
        """Test that on-demand runs leave the schedule untouched."""
        engine = make_engine()
        task = FunctionTask("Owned", interval_seconds=30)
        engine.schedule_all([task])
        entry = engine.get_entry("Owned")

        assert engine.run_task("Owned") is True
        assert task.calls == 1
        assert engine.get_entry("Owned") is entry
        assert engine.state_of("Owned") == EntryState.PENDING

    def test_run_unscheduled_task(self, make_engine) -> None:
        """Test that tasks which cannot start still run on demand."""
        engine = make_engine()
        task = FunctionTask("Manual", can_start=False)
        engine.schedule_all([task])

        assert engine.run_task("Manual") is True
        assert task.calls == 1
        assert engine.get_entry("Manual") is None

    def test_run_from_registry(self, make_engine, registry: TaskRegistry) -> None:
        """Test that unknown tasks are looked up in the registry."""
        registry.add(OnDemandOnly)
        OnDemandOnly.runs = 0
        engine = make_engine()

        assert engine.run_task("OnDemandOnly") is True
        assert OnDemandOnly.runs == 1
        assert engine.tasks == []

    def test_run_missing_task(self, make_engine) -> None:
        """Test that an unknown name raises TaskNotFoundError."""
        engine = make_engine()

        with pytest.raises(TaskNotFoundError, match="Nope"):
            engine.run_task("Nope")

    def test_run_failure_raises_work_error(self, make_engine) -> None:
        """Test that do_work() errors surface as WorkError without unscheduling."""
        engine = make_engine()
        task = FunctionTask("Flaky", work=fail_first)
        engine.schedule_all([task])

        with pytest.raises(WorkError):
            engine.run_task("Flaky")

        assert engine.state_of("Flaky") == EntryState.PENDING
        assert engine.run_task("Flaky") is True

    def test_on_demand_never_overlaps_scheduled_run(self, make_engine, wait_for) -> None:
        """Test that on-demand and scheduled runs of one task are serialized."""
        engine = make_engine(kick_start_delay=0.1)
        task = FunctionTask("A", interval_seconds=1, can_kick_start=True, work=sleep_for(0.2))
        engine.schedule_all([task])
        engine.start()

        time.sleep(0.05)
        threads = [threading.Thread(target=engine.run_task, args=("A",)) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert wait_for(lambda: task.calls >= 4)
        assert task.max_active == 1


class TestShutdown:
    """Tests for ScheduleEngine.shutdown()."""

    def test_shutdown_stops_everything(self, make_engine) -> None:
        """Test that shutdown stops runners and drops entries."""
        lifecycle = HostingLifecycle()
        engine = make_engine(lifecycle=lifecycle)
        tasks = [
            FunctionTask("A", interval_seconds=30),
            FunctionTask("B", can_start=False),
        ]
        engine.schedule_all(tasks)
        engine.start()
        assert engine.is_running

        engine.shutdown(immediate=True)

        assert not engine.is_running
        assert engine.is_stopping
        assert engine.entries == []
        assert all(t.runner.shutting_down for t in tasks)
        assert engine.state_of("A") == EntryState.STOPPED
        assert engine.state_of("B") == EntryState.UNSCHEDULED
        assert len(lifecycle) == 0

    def test_shutdown_is_idempotent(self, make_engine) -> None:
        """Test that a second shutdown does nothing."""
        engine = make_engine()
        engine.schedule_all([FunctionTask("A")])
        engine.shutdown()
        engine.shutdown()

        assert engine.entries == []

    def test_shutdown_completes_when_log_sink_fails(self, make_engine) -> None:
        """Test that a sink failing on one stop event still stops the whole engine."""

        def broken_on_stop(event: LogEvent) -> None:
            if event.source.name == "A" and event.message.startswith("Stop"):
                raise RuntimeError("sink down")

        lifecycle = HostingLifecycle()
        engine = make_engine(lifecycle=lifecycle, log_handlers=[broken_on_stop])
        tasks = [FunctionTask("A"), FunctionTask("B")]
        engine.schedule_all(tasks)
        engine.start()

        with pytest.raises(LogSinkError):
            engine.shutdown()

        assert not engine.is_running
        assert engine.entries == []
        assert all(t.runner.shutting_down for t in tasks)
        assert engine.state_of("A") == EntryState.STOPPED
        assert engine.state_of("B") == EntryState.STOPPED
        assert len(lifecycle) == 0

        engine.shutdown()
        assert not engine.is_running

    def test_no_fire_after_shutdown(self, make_engine) -> None:
        """Test that pending entries never fire after shutdown."""
        engine = make_engine(kick_start_delay=0.3)
        task = FunctionTask("Late", can_kick_start=True)
        engine.schedule_all([task])
        engine.start()

        engine.shutdown()
        time.sleep(0.5)

        assert task.calls == 0

    def test_shutdown_waits_for_in_flight_run(self, make_engine, wait_for) -> None:
        """Test that a run in progress finishes and is not rescheduled."""
        engine = make_engine()
        task = FunctionTask("Busy", can_kick_start=True, work=sleep_for(0.3))
        engine.schedule_all([task])
        engine.start()

        assert wait_for(lambda: task.active == 1)
        engine.shutdown(wait=True)

        assert task.calls == 1
        assert task.active == 0
        assert engine.state_of("Busy") == EntryState.STOPPED
        assert engine.get_entry("Busy") is None

    def test_cannot_reuse_after_shutdown(self, make_engine) -> None:
        """Test that a shut down engine rejects new work."""
        engine = make_engine()
        engine.shutdown()

        with pytest.raises(TickworkError):
            engine.schedule_all([FunctionTask("A")])
        with pytest.raises(TickworkError):
            engine.start()


class TestStatus:
    """Tests for engine introspection."""

    def test_get_status(self, make_engine) -> None:
        """Test the status dictionary."""
        engine = make_engine()
        engine.schedule_all([
            FunctionTask("A", interval_seconds=30),
            FunctionTask("B", can_start=False),
        ])
        engine.run_task("A")

        status = engine.get_status()

        assert status["running"] is False
        assert status["total_tasks"] == 2
        assert status["scheduled_tasks"] == 1
        a, b = status["tasks"]
        assert a["name"] == "A"
        assert a["state"] == "pending"
        assert a["next_run"] is not None
        assert a["run_count"] == 1
        assert a["last_run"] is not None
        assert b["state"] == "unscheduled"
        assert b["next_run"] is None

    def test_state_of_unknown(self, make_engine) -> None:
        """Test state lookup for a task the engine does not own."""
        engine = make_engine()

        with pytest.raises(TaskNotFoundError):
            engine.state_of("Nope")
