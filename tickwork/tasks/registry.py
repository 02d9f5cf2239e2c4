"""Task registry for discovering runnable tasks.

The TaskRegistry finds Task implementations from several sources:
- Explicit registrations (register() / TaskRegistry.add())
- Modules already loaded in the process
- Configured packages, walked recursively
- Entry points (installed packages)
- Task directories

Every discovery call builds fresh task instances. The registry never
caches instances; the scheduling engine is their only long-lived owner.
"""

import importlib
import importlib.util
import inspect
import logging
import pkgutil
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Iterator, List, Optional, Set, Union

from tickwork.exceptions import DiscoveryError
from tickwork.tasks.base import Task

logger = logging.getLogger(__name__)

TaskFactory = Union[type, Callable[[], Task]]

# Process-wide registrations, filled at import time by task modules
_registered_factories: List[TaskFactory] = []


def register(factory: TaskFactory) -> TaskFactory:
    """Register a task class or factory with every registry.

    Usable as a class decorator:

        @register
        class Cleanup(Task):
            interval_seconds = 60

            def do_work(self) -> None:
                ...

    Args:
        factory: A concrete Task subclass or a no-argument callable
            returning a Task

    Returns:
        The factory, unchanged
    """
    if factory not in _registered_factories:
        _registered_factories.append(factory)
    return factory


def unregister(factory: TaskFactory) -> bool:
    """Remove a process-wide registration.

    Returns:
        True if the factory was registered
    """
    if factory in _registered_factories:
        _registered_factories.remove(factory)
        return True
    return False


def registered_factories() -> List[TaskFactory]:
    """Get the process-wide registrations."""
    return list(_registered_factories)


def clear_registrations() -> None:
    """Drop every process-wide registration."""
    _registered_factories.clear()


class TaskRegistry:
    """Registry for discovering and instantiating tasks.

    Example:
        registry = TaskRegistry(packages=["myapp.tasks"])

        # Instantiate every concrete task
        tasks = registry.discover_all()

        # Instantiate a single task by name
        task = registry.find_by_name("PurgeSessions")
    """

    # Entry point group for third-party tasks
    ENTRY_POINT_GROUP = "tickwork.tasks"

    # Module prefixes never scanned among loaded modules
    TRUSTED_PREFIXES = ("tickwork", "builtins")

    def __init__(
        self,
        packages: Optional[List[str]] = None,
        task_dirs: Optional[List[Path]] = None,
        exclude_modules: Optional[List[str]] = None,
        scan_loaded_modules: bool = True,
        use_entry_points: bool = True,
        include_registered: bool = True,
    ) -> None:
        """Initialize the task registry.

        Args:
            packages: Packages to import and walk for tasks
            task_dirs: Directories of task files to load
            exclude_modules: Extra module prefixes to treat as trusted
                and skip during the loaded-module scan
            scan_loaded_modules: Whether to scan modules in sys.modules
            use_entry_points: Whether to load the tickwork.tasks entry points
            include_registered: Whether to include process-wide registrations
        """
        self._packages = list(packages or [])
        self._task_dirs = [Path(p) for p in (task_dirs or [])]
        self._exclude_modules = list(exclude_modules or [])
        self._scan_loaded_modules = scan_loaded_modules
        self._use_entry_points = use_entry_points
        self._include_registered = include_registered
        self._factories: List[TaskFactory] = []

    @classmethod
    def from_config(cls, config: Any) -> "TaskRegistry":
        """Build a registry from a DiscoveryConfig."""
        return cls(
            packages=config.packages,
            task_dirs=config.task_dirs,
            exclude_modules=config.exclude_modules,
            scan_loaded_modules=config.scan_loaded_modules,
            use_entry_points=config.use_entry_points,
        )

    @property
    def packages(self) -> List[str]:
        return list(self._packages)

    @property
    def task_dirs(self) -> List[Path]:
        return list(self._task_dirs)

    def add(self, factory: TaskFactory) -> None:
        """Register a task class or factory with this registry only."""
        if factory not in self._factories:
            self._factories.append(factory)

    def add_package(self, package: str) -> None:
        """Add a package to walk for tasks."""
        if package not in self._packages:
            self._packages.append(package)

    def add_task_directory(self, path: Path) -> None:
        """Add a directory to search for task files."""
        path = Path(path)
        if path not in self._task_dirs:
            self._task_dirs.append(path)

    def discover_all(self) -> List[Task]:
        """Instantiate one task per concrete task type found.

        Returns:
            Fresh task instances, in discovery order
        """
        tasks: List[Task] = []
        for factory in self._iter_factories():
            task = self._instantiate(factory)
            if task is not None:
                tasks.append(task)

        logger.debug(f"Discovered {len(tasks)} tasks")
        return tasks

    def find_by_name(self, name: str) -> Optional[Task]:
        """Instantiate the first task type whose name matches.

        Classes are matched on their class name or declared task name
        without being instantiated; plain factories are called to learn
        their name.

        Args:
            name: Task or class name

        Returns:
            A fresh task instance, or None if nothing matches
        """
        for factory in self._iter_factories():
            if isinstance(factory, type):
                if factory.__name__ != name and getattr(factory, "name", "") != name:
                    continue
                return self._instantiate(factory)

            task = self._instantiate(factory)
            if task is not None and task.name == name:
                return task

        return None

    @property
    def available_tasks(self) -> List[str]:
        """Get the names of every task type that can be discovered."""
        names: List[str] = []
        for factory in self._iter_factories():
            if isinstance(factory, type):
                names.append(getattr(factory, "name", "") or factory.__name__)
            else:
                task = self._instantiate(factory)
                if task is not None:
                    names.append(task.name)
        return names

    def _iter_factories(self) -> Iterator[TaskFactory]:
        """Yield each factory once, source by source."""
        seen: Set[int] = set()

        for factory in self._all_sources():
            key = id(factory)
            if key in seen:
                continue
            seen.add(key)
            yield factory

    def _all_sources(self) -> Iterator[TaskFactory]:
        if self._include_registered:
            yield from list(_registered_factories)
        yield from list(self._factories)
        if self._scan_loaded_modules:
            yield from self._discover_loaded_modules()
        yield from self._discover_packages()
        if self._use_entry_points:
            yield from self._discover_entry_points()
        yield from self._discover_directories()

    def _discover_loaded_modules(self) -> Iterator[type]:
        """Discover tasks defined in modules the process already imported."""
        for module_name, module in list(sys.modules.items()):
            if module is None or self._is_trusted(module_name):
                continue
            try:
                classes = self._task_classes_in(module)
            except Exception as e:
                self._skip(DiscoveryError(str(e), unit=module_name))
                continue
            yield from classes

    def _discover_packages(self) -> Iterator[type]:
        """Discover tasks in configured packages and their submodules."""
        for package_name in self._packages:
            try:
                package = importlib.import_module(package_name)
            except Exception as e:
                self._skip(DiscoveryError(f"Cannot import package: {e}", unit=package_name))
                continue

            yield from self._task_classes_in(package)

            package_path = getattr(package, "__path__", None)
            if package_path is None:
                continue

            for info in pkgutil.walk_packages(
                package_path,
                prefix=f"{package.__name__}.",
                onerror=lambda name: self._skip(
                    DiscoveryError("Cannot walk package", unit=name)
                ),
            ):
                try:
                    module = importlib.import_module(info.name)
                except Exception as e:
                    self._skip(DiscoveryError(f"Cannot import module: {e}", unit=info.name))
                    continue
                yield from self._task_classes_in(module)

    def _discover_entry_points(self) -> Iterator[TaskFactory]:
        """Discover tasks from the tickwork.tasks entry point group."""
        from importlib.metadata import entry_points

        for ep in entry_points(group=self.ENTRY_POINT_GROUP):
            try:
                loaded = ep.load()
            except Exception as e:
                self._skip(DiscoveryError(f"Cannot load entry point: {e}", unit=ep.name))
                continue

            if self._is_task_class(loaded):
                yield loaded
            elif callable(loaded) and not isinstance(loaded, type):
                yield loaded

    def _discover_directories(self) -> Iterator[type]:
        """Discover tasks from Python files in task directories."""
        for task_dir in self._task_dirs:
            if not task_dir.exists():
                continue

            for py_file in sorted(task_dir.glob("*.py")):
                if py_file.name.startswith("_"):
                    continue

                try:
                    module = self._load_from_file(py_file)
                except Exception as e:
                    self._skip(DiscoveryError(f"Cannot load file: {e}", unit=str(py_file)))
                    continue

                if module is not None:
                    yield from self._task_classes_in(module)

    def _load_from_file(self, path: Path) -> Optional[ModuleType]:
        """Import a Python file as a standalone module.

        Args:
            path: Path to the Python file

        Returns:
            The loaded module, or None if no loader is available
        """
        spec = importlib.util.spec_from_file_location(
            f"tickwork_task_dir_{path.stem}",
            path,
        )

        if not spec or not spec.loader:
            return None

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def _task_classes_in(self, module: ModuleType) -> List[type]:
        """Get the concrete task classes defined in a module."""
        return [
            obj
            for obj in list(vars(module).values())
            if self._is_task_class(obj) and obj.__module__ == module.__name__
        ]

    def _is_task_class(self, obj: Any) -> bool:
        """Check if an object is a concrete task class."""
        return (
            isinstance(obj, type)
            and issubclass(obj, Task)
            and obj is not Task
            and not inspect.isabstract(obj)
        )

    def _is_trusted(self, module_name: str) -> bool:
        """Check whether a loaded module is framework code to skip."""
        top_level = module_name.partition(".")[0]
        if top_level in sys.stdlib_module_names:
            return True
        prefixes = (*self.TRUSTED_PREFIXES, *self._exclude_modules)
        return any(
            module_name == prefix or module_name.startswith(f"{prefix}.")
            for prefix in prefixes
        )

    def _instantiate(self, factory: TaskFactory) -> Optional[Task]:
        """Build a task from a class or factory, skipping failures."""
        try:
            task = factory()
        except Exception as e:
            logger.warning(f"Failed to instantiate task {_factory_name(factory)}: {e}")
            return None

        if not isinstance(task, Task):
            logger.warning(f"Factory {_factory_name(factory)} did not return a Task")
            return None

        return task

    def _skip(self, error: DiscoveryError) -> None:
        logger.debug(f"Skipping unit during discovery: {error}")


def _factory_name(factory: TaskFactory) -> str:
    return getattr(factory, "__qualname__", None) or repr(factory)


# Global registry instance
_default_registry: Optional[TaskRegistry] = None


def get_registry() -> TaskRegistry:
    """Get the default task registry.

    Returns:
        The singleton TaskRegistry instance
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = TaskRegistry()
    return _default_registry


def reset_registry() -> None:
    """Reset the default task registry."""
    global _default_registry
    _default_registry = None
