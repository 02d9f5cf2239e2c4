"""
Tickwork configuration management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration files (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

import yaml


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "tickwork"
DEFAULT_CONFIG_FILE = "config.toml"

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the schedule engine."""

    # Delay before the first run of a kick-start task
    kick_start_delay: float = 1.0

    # Worker threads shared by all expiry handlers
    max_workers: int = 10

    # Wait for running handlers when shutting down
    shutdown_wait: bool = True

    timezone: str = "UTC"


@dataclass
class DiscoveryConfig:
    """Configuration for task discovery."""

    packages: list[str] = field(default_factory=list)
    task_dirs: list[Path] = field(default_factory=list)

    # Module prefixes skipped by the loaded-module scan
    exclude_modules: list[str] = field(default_factory=list)

    scan_loaded_modules: bool = True
    use_entry_points: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class TickworkConfig:
    """Main configuration container for tickwork."""

    config_dir: Path = DEFAULT_CONFIG_DIR

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "TICKWORK_",
) -> TickworkConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/tickwork/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = TickworkConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    return _load_from_env(config, env_prefix)


def _load_from_file(path: Path, config: TickworkConfig) -> TickworkConfig:
    """Load configuration from a TOML file.

    Raises:
        ConfigurationError: If the file is not valid TOML
    """
    from tickwork.exceptions import ConfigurationError

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load config from {path}: {e}",
            details={"path": str(path)},
        ) from e

    if "scheduler" in data:
        for key, value in data["scheduler"].items():
            if hasattr(config.scheduler, key):
                setattr(config.scheduler, key, value)

    if "discovery" in data:
        for key, value in data["discovery"].items():
            if key == "task_dirs":
                config.discovery.task_dirs = [Path(p) for p in value]
            elif hasattr(config.discovery, key):
                setattr(config.discovery, key, value)

    if "logging" in data:
        for key, value in data["logging"].items():
            if key == "file":
                config.logging.file = Path(value) if value else None
            elif hasattr(config.logging, key):
                setattr(config.logging, key, value)

    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])

    return config


def _load_from_env(config: TickworkConfig, prefix: str) -> TickworkConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}KICK_START_DELAY"):
        config.scheduler.kick_start_delay = float(env_val)
    if env_val := os.environ.get(f"{prefix}MAX_WORKERS"):
        config.scheduler.max_workers = int(env_val)
    if env_val := os.environ.get(f"{prefix}SHUTDOWN_WAIT"):
        config.scheduler.shutdown_wait = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}TIMEZONE"):
        config.scheduler.timezone = env_val

    # Discovery settings
    if env_val := os.environ.get(f"{prefix}PACKAGES"):
        config.discovery.packages = [p.strip() for p in env_val.split(",") if p.strip()]
    if env_val := os.environ.get(f"{prefix}TASK_DIRS"):
        config.discovery.task_dirs = [Path(p) for p in env_val.split(os.pathsep) if p]
    if env_val := os.environ.get(f"{prefix}EXCLUDE_MODULES"):
        config.discovery.exclude_modules = [
            p.strip() for p in env_val.split(",") if p.strip()
        ]
    if env_val := os.environ.get(f"{prefix}SCAN_LOADED_MODULES"):
        config.discovery.scan_loaded_modules = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}USE_ENTRY_POINTS"):
        config.discovery.use_entry_points = env_val.lower() in _TRUE_VALUES

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()
    if env_val := os.environ.get(f"{prefix}LOG_FILE"):
        config.logging.file = Path(env_val)

    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)

    return config


def validate_config(config: Optional[TickworkConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    if config.scheduler.kick_start_delay < 0:
        errors.append(ValidationError(
            field="scheduler.kick_start_delay",
            message="Kick-start delay cannot be negative.",
            severity="error",
        ))

    if config.scheduler.max_workers < 1:
        errors.append(ValidationError(
            field="scheduler.max_workers",
            message="At least one worker thread is required.",
            severity="error",
        ))

    for task_dir in config.discovery.task_dirs:
        if not task_dir.exists():
            errors.append(ValidationError(
                field="discovery.task_dirs",
                message=f"Task directory does not exist: {task_dir}",
                severity="warning",
            ))

    if (
        not config.discovery.packages
        and not config.discovery.task_dirs
        and not config.discovery.scan_loaded_modules
        and not config.discovery.use_entry_points
    ):
        errors.append(ValidationError(
            field="discovery",
            message="Every discovery source is disabled; only registered tasks will run.",
            severity="warning",
        ))

    if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error",
        ))

    return errors


def config_to_dict(config: TickworkConfig) -> dict[str, Any]:
    """Convert configuration to a plain dictionary."""
    return {
        "config_dir": str(config.config_dir),
        "scheduler": {
            "kick_start_delay": config.scheduler.kick_start_delay,
            "max_workers": config.scheduler.max_workers,
            "shutdown_wait": config.scheduler.shutdown_wait,
            "timezone": config.scheduler.timezone,
        },
        "discovery": {
            "packages": list(config.discovery.packages),
            "task_dirs": [str(p) for p in config.discovery.task_dirs],
            "exclude_modules": list(config.discovery.exclude_modules),
            "scan_loaded_modules": config.discovery.scan_loaded_modules,
            "use_entry_points": config.discovery.use_entry_points,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: TickworkConfig) -> str:
    """Export configuration as a YAML string."""
    return yaml.dump(
        config_to_dict(config),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def export_config_json(config: TickworkConfig) -> str:
    """Export configuration as a JSON string."""
    return json.dumps(config_to_dict(config), indent=2)
