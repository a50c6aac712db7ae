"""Project-wide logging utilities that honour `RuntimeConfig`."""

import logging
from typing import Optional

from runtime.config import runtime_config


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger configured according to the runtime configuration."""
    logger_name = "interdex" if name is None else f"interdex.{name}"
    logger = logging.getLogger(logger_name)
    logger.setLevel(runtime_config().log_level_value)
    return logger
