"""Task host service.

This module provides the long-running host for the schedule engine:
- Startup and shutdown hooks for the hosting environment
- Signal handling for graceful shutdown
- On-demand task runs while the host is up
"""

import asyncio
import logging
import signal
from typing import Any, Dict, Optional

from tickwork.config import TickworkConfig
from tickwork.exceptions import TickworkError
from tickwork.host.lifecycle import HostingLifecycle
from tickwork.scheduler.engine import ScheduleEngine
from tickwork.tasks.registry import TaskRegistry

logger = logging.getLogger(__name__)


class TaskHost:
    """Hosts a schedule engine for the lifetime of the process.

    The hosting environment calls on_startup() once, and
    on_shutdown_requested() when the process starts draining. The async
    start()/stop() wrappers do the same from an event loop.

    Example:
        host = TaskHost(config)

        await host.start()
        await host.run_until_shutdown()
        await host.stop()
    """

    def __init__(
        self,
        config: TickworkConfig,
        registry: Optional[TaskRegistry] = None,
        lifecycle: Optional[HostingLifecycle] = None,
    ) -> None:
        """Initialize the host.

        Args:
            config: Tickwork configuration
            registry: Task registry (default: built from the discovery config)
            lifecycle: Hosting lifecycle the task runners register with
        """
        self._config = config
        self._registry = registry
        self._lifecycle = lifecycle or HostingLifecycle()
        self._engine: Optional[ScheduleEngine] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def engine(self) -> Optional[ScheduleEngine]:
        """The schedule engine, or None if not started."""
        return self._engine

    @property
    def lifecycle(self) -> HostingLifecycle:
        return self._lifecycle

    def on_startup(self) -> None:
        """Discover and schedule every eligible task, then start the timers.

        Raises:
            ConfigurationError: If a discovered task is invalid
        """
        if self._engine is not None:
            raise TickworkError("Task host already started")

        logger.info("Starting task host...")

        registry = self._registry or TaskRegistry.from_config(self._config.discovery)
        engine = ScheduleEngine(
            self._config.scheduler,
            registry=registry,
            lifecycle=self._lifecycle,
        )
        engine.register_tasks()
        engine.start()

        self._engine = engine
        self._running = True
        logger.info(f"Task host started with {len(engine.tasks)} tasks")

    def on_shutdown_requested(self, immediate: bool = False) -> None:
        """Stop every task runner, then shut the engine down.

        Runs in progress finish first. The engine is shut down even if a
        runner fails to stop.

        Args:
            immediate: Forwarded to every runner's request_stop()
        """
        logger.info(f"Shutdown requested (immediate={immediate})")
        self._running = False

        try:
            stopped = self._lifecycle.stop_all(immediate)
            logger.debug(f"Stopped {stopped} task runners")
        finally:
            if self._engine is not None:
                self._engine.shutdown(immediate)

    async def start(self) -> None:
        """Start the host from an event loop."""
        await asyncio.to_thread(self.on_startup)

    async def stop(self, immediate: bool = False) -> None:
        """Stop the host from an event loop.

        Waits for in-flight runs without blocking the loop.
        """
        if self._engine is None:
            return

        try:
            await asyncio.to_thread(self.on_shutdown_requested, immediate)
        except TickworkError as e:
            logger.warning(f"Error stopping task host: {e}")

        logger.info("Task host stopped")

    def run_task(self, name: str) -> bool:
        """Run one task on demand.

        Raises:
            TickworkError: If the host is not started
            TaskNotFoundError: If no task has that name
            WorkError: If the task's do_work() raises
        """
        if self._engine is None:
            raise TickworkError("Task host is not started")
        return self._engine.run_task(name)

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request host shutdown.

        Sets the shutdown event so run_until_shutdown() returns.
        """
        logger.info("Shutdown requested")
        self._shutdown_event.set()


async def run_host(config: TickworkConfig, options: Optional[Dict[str, Any]] = None) -> None:
    """Run the task host with signal handling.

    Args:
        config: Tickwork configuration
        options: Host options including:
            - registry: TaskRegistry to use instead of the configured one
            - immediate: Request an immediate stop on shutdown

    Example:
        await run_host(config, {"immediate": False})
    """
    options = options or {}
    host = TaskHost(config, registry=options.get("registry"))

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        host.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(
                    handle_signal, signal.Signals(signum)
                ),
            )

    try:
        await host.start()
        await host.run_until_shutdown()
    finally:
        await host.stop(immediate=options.get("immediate", False))
