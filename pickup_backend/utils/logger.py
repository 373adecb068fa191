"""Process-wide logging setup and pipe-delimited event formatting."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from pickup_backend.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Manifest operations log one line per committed change, so every module
    shares the same ``time | level | logger | message`` layout.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def format_event(event: str, **fields: Any) -> str:
    """Render ``event | key=value | ...`` with keys in call order."""
    parts = [event]
    parts.extend(f"{key}={value}" for key, value in fields.items())
    return " | ".join(parts)
