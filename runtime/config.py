"""
Interdex Runtime Configuration
==============================
Environment-driven settings, read once per process and cached.

Variables:
  INTERDEX_LOG_LEVEL       logging level name (default WARNING)
  INTERDEX_ARCHIVE_EXT     file extension used by file archivers (default yml)
  INTERDEX_ARCHIVER_DELAY  seconds to pause inside every archiver task (default 0)
  INTERDEX_LOCKING         advisory file locks on/off (default on)
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _bool_from_env(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _float_from_env(value: Optional[str], *, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value '{value}'") from exc
    if parsed < 0:
        raise ValueError(f"Negative delay '{value}'")
    return parsed


def _normalise_log_level(value: Optional[str]) -> str:
    if value is None or value.strip() == "":
        return "WARNING"
    value = value.strip().upper()
    if value not in _LOG_LEVELS:
        raise ValueError(f"Unsupported log level '{value}'. Expected one of {sorted(_LOG_LEVELS)}.")
    return value


def _normalise_extension(value: Optional[str]) -> str:
    if value is None or value.strip() == "":
        return "yml"
    return value.strip().lstrip(".")


@dataclass(frozen=True)
class RuntimeConfig:
    log_level: str
    archive_ext: str
    archiver_delay: float
    locking: bool

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        return cls(
            log_level=_normalise_log_level(os.getenv("INTERDEX_LOG_LEVEL")),
            archive_ext=_normalise_extension(os.getenv("INTERDEX_ARCHIVE_EXT")),
            archiver_delay=_float_from_env(os.getenv("INTERDEX_ARCHIVER_DELAY"), default=0.0),
            locking=_bool_from_env(os.getenv("INTERDEX_LOCKING"), default=True),
        )


@lru_cache(maxsize=None)
def runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration."""
    return RuntimeConfig.from_env()


def reset_runtime_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    runtime_config.cache_clear()
