"""Runtime configuration for memkeeper."""

import dataclasses
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from memkeeper.exceptions import ConfigError

logger = logging.getLogger(__name__)

PROTECTED_APPS = (
    "Finder",
    "Dock",
    "WindowServer",
    "loginwindow",
    "SystemUIServer",
    "CoreServicesUIAgent",
    "Spotlight",
    "NotificationCenter",
)


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """
    Tunables for sampling, history, alerting and cleanup.

    Defaults reproduce the stock behaviour; a TOML file only needs to list
    the values it changes.
    """

    # Scheduling
    refresh_interval: float = 5.0
    ps_timeout: float = 3.0
    vm_stat_timeout: float = 2.0
    swap_timeout: float = 0.5

    # Parsing
    min_process_mb: float = 1.0
    default_page_size: int = 16384

    # History and alerts
    history_capacity: int = 60
    trend_threshold_mb: float = 50.0
    alert_critical_percent: int = 90
    alert_high_percent: int = 85
    alert_reset_percent: int = 80

    # Cleanup
    settle_delay: float = 1.5
    followup_delay: float = 1.0
    kill_refresh_delay: float = 0.5
    active_cpu_percent: float = 0.1
    min_kill_mb: float = 50.0
    browser_keep: int = 5
    helper_keep: int = 3
    protected_apps: tuple[str, ...] = PROTECTED_APPS
    tracked_families: tuple[str, ...] = ("Claude", "Chrome")

    # Recommendations
    recommend_above_percent: int = 70
    recommend_worker_count: int = 5
    recommend_helper_count: int = 8
    recommend_swap_mb: float = 2000.0
    recommend_helper_keep: int = 5


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Check a TOML value against the type of its default."""
    if isinstance(default, tuple):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"'{name}' must be a list of strings", field_name=name)
        return tuple(value)
    if isinstance(default, float):
        # TOML integers are fine where a float is expected
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"'{name}' must be a number", field_name=name)
        if value < 0:
            raise ConfigError(f"'{name}' must not be negative", field_name=name)
        return float(value)
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"'{name}' must be an integer", field_name=name)
        if value < 0:
            raise ConfigError(f"'{name}' must not be negative", field_name=name)
        return value
    return value


def config_from_mapping(data: dict[str, Any]) -> MonitorConfig:
    """
    Build a MonitorConfig from a plain mapping.

    Args:
        data: Keys named after MonitorConfig fields.

    Raises:
        ConfigError: On unknown keys or values of the wrong type.
    """
    defaults = MonitorConfig()
    known = {f.name for f in dataclasses.fields(MonitorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    overrides = {
        name: _coerce(name, value, getattr(defaults, name)) for name, value in data.items()
    }
    if overrides.get("history_capacity", defaults.history_capacity) < 1:
        raise ConfigError("'history_capacity' must be at least 1", field_name="history_capacity")
    return dataclasses.replace(defaults, **overrides)


def load_config(path: Path) -> MonitorConfig:
    """
    Load the ``[monitor]`` table of a TOML file.

    Args:
        path: Location of the TOML file.

    Returns:
        A MonitorConfig with the file's values applied over the defaults.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    logger.info("Loading configuration from %s", path)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed configuration file {path}: {e}") from e

    section = data.get("monitor", {})
    if not isinstance(section, dict):
        raise ConfigError("'monitor' must be a table")
    return config_from_mapping(section)
