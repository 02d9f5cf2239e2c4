"""Shared fixtures for the tickwork test suite."""

import time
from typing import Callable

import pytest

from tickwork.tasks.registry import clear_registrations, reset_registry


@pytest.fixture(autouse=True)
def isolated_registrations():
    """Start and end every test without process-wide task registrations."""
    clear_registrations()
    reset_registry()
    yield
    clear_registrations()
    reset_registry()


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout expires."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
