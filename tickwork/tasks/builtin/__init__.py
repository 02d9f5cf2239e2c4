"""Built-in tasks shipped with tickwork."""

from tickwork.tasks.builtin.heartbeat import HeartbeatTask

__all__ = ["HeartbeatTask"]
