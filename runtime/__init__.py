"""
Interdex Runtime
================
Process-wide configuration and logging helpers.

Usage:
    from runtime import runtime_config, get_logger
"""

from runtime.config import RuntimeConfig, runtime_config, reset_runtime_config
from runtime.log import get_logger

__all__ = [
    "RuntimeConfig", "runtime_config", "reset_runtime_config",
    "get_logger",
]
