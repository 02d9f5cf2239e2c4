"""Heartbeat task.

Logs a line on every run so operators can confirm the scheduler is alive.
Enable it with ``--package tickwork.tasks.builtin``.
"""

import logging
import os
import time

from tickwork.tasks.base import LogLevel, Task


class HeartbeatTask(Task):
    """Emit a heartbeat event once a minute."""

    name = "HeartbeatTask"
    interval_seconds = 60
    can_kick_start = True
    can_start = True

    def __init__(self) -> None:
        self._started_at = time.monotonic()
        self.beats = 0

    def do_work(self) -> None:
        self.beats += 1
        uptime = time.monotonic() - self._started_at
        self.runner.emit(
            LogLevel.INFO,
            f"Heartbeat #{self.beats} pid={os.getpid()} uptime={uptime:.0f}s",
        )
        logging.getLogger(__name__).debug(f"Heartbeat {self.beats} sent")
