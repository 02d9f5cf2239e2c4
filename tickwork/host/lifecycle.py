"""Hosting lifecycle tracking the objects to stop when the process drains."""

import logging
import threading
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


class Stoppable(Protocol):
    """Anything the lifecycle can ask to stop."""

    def request_stop(self, immediate: bool = False) -> None:
        ...


class HostingLifecycle:
    """Thread-safe registry of live stoppable objects.

    Task runners register themselves on construction and unregister
    from inside request_stop(), so after stop_all() returns the
    lifecycle is empty.

    Example:
        lifecycle = HostingLifecycle()
        runner = TaskRunner(task, lifecycle=lifecycle)

        lifecycle.stop_all(immediate=False)
        assert not lifecycle.registered
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registered: List[Stoppable] = []

    @property
    def registered(self) -> List[Stoppable]:
        """Get a snapshot of the registered objects."""
        with self._lock:
            return list(self._registered)

    def __len__(self) -> int:
        with self._lock:
            return len(self._registered)

    def __contains__(self, obj: object) -> bool:
        with self._lock:
            return any(item is obj for item in self._registered)

    def register(self, obj: Stoppable) -> None:
        """Track an object until it unregisters."""
        with self._lock:
            if not any(item is obj for item in self._registered):
                self._registered.append(obj)

    def unregister(self, obj: Stoppable) -> bool:
        """Stop tracking an object.

        Returns:
            True if the object was registered
        """
        with self._lock:
            for i, item in enumerate(self._registered):
                if item is obj:
                    del self._registered[i]
                    return True
        return False

    def stop_all(self, immediate: bool = False) -> int:
        """Call request_stop() on every registered object.

        The lock is not held while objects stop, since stopping waits
        for in-flight runs and unregisters. Every object is asked to stop
        even if an earlier one fails.

        Args:
            immediate: Forwarded to each request_stop()

        Returns:
            Number of objects asked to stop

        Raises:
            Exception: The first error raised by a request_stop(), once
                every object has been asked to stop
        """
        targets = self.registered
        logger.debug(f"Stopping {len(targets)} registered objects (immediate={immediate})")

        first_error: Optional[Exception] = None
        for obj in targets:
            try:
                obj.request_stop(immediate)
            except Exception as e:
                logger.error(f"Failed to stop {obj!r}: {e}")
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error

        return len(targets)
