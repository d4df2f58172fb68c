"""Shared flowengine configuration utilities.

Centralises reading of ~/.flowengine/configuration.json so that the CLI and
library callers share one implementation.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_FILE = Path.home() / ".flowengine" / "configuration.json"
DEFAULT_FLOWS_DIR = "flows"


def get_config_path() -> Path:
    """Return the configuration file path, honouring FLOWENGINE_CONFIG."""
    override = os.environ.get("FLOWENGINE_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_FILE


def get_flowengine_config() -> dict[str, Any]:
    """Load the configuration file. A missing or unreadable file yields {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: top level is not an object")
        return {}
    return data


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_flows_dir() -> str:
    """Directory the CLI scans for flow files."""
    return os.environ.get("FLOWENGINE_FLOWS_DIR") or get_flowengine_config().get(
        "flows_dir", DEFAULT_FLOWS_DIR
    )


def get_log_level() -> str:
    return os.environ.get("FLOWENGINE_LOG_LEVEL") or get_flowengine_config().get(
        "logging", {}
    ).get("level", "INFO")


def get_log_format() -> str:
    return get_flowengine_config().get("logging", {}).get("format", "auto")


def _positive_int(key: str) -> int | None:
    value = get_flowengine_config().get("execution", {}).get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        logger.warning(f"Ignoring execution.{key}={value!r}: expected a positive integer")
        return None
    return value


def get_default_timeout_ms() -> int | None:
    """Timeout applied to flows whose settings do not set one."""
    return _positive_int("default_timeout_ms")


def get_max_parallelism_cap() -> int | None:
    """Upper bound applied to every flow's maxParallelism."""
    return _positive_int("max_parallelism_cap")


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Engine runtime configuration loaded from ~/.flowengine/configuration.json.

    File layout:
        {
          "flows_dir": "flows",
          "logging": {"level": "INFO", "format": "auto"},
          "execution": {"default_timeout_ms": 600000, "max_parallelism_cap": 8}
        }
    """

    flows_dir: str = field(default_factory=get_flows_dir)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)
    default_timeout_ms: int | None = field(default_factory=get_default_timeout_ms)
    max_parallelism_cap: int | None = field(default_factory=get_max_parallelism_cap)

    def effective_parallelism(self, requested: int) -> int:
        if self.max_parallelism_cap is None:
            return requested
        return max(1, min(requested, self.max_parallelism_cap))

    def effective_timeout_ms(self, requested: int | None) -> int | None:
        return requested if requested is not None else self.default_timeout_ms
