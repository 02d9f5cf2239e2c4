"""Scheduling engine for recurring tasks."""

from tickwork.scheduler.engine import EntryState, ScheduleEngine, ScheduleEntry

__all__ = [
    "EntryState",
    "ScheduleEngine",
    "ScheduleEntry",
]
