"""Hosting for the schedule engine."""

from tickwork.host.lifecycle import HostingLifecycle, Stoppable
from tickwork.host.service import TaskHost, run_host

__all__ = [
    "HostingLifecycle",
    "Stoppable",
    "TaskHost",
    "run_host",
]
