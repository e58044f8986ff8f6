"""Logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

from config.settings import AppConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILENAME = "application.log"
APP_LOGGER = "nano_bananary"


def _resolve_level(name: str) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: AppConfig) -> logging.Logger:
    """Log to ``log_dir/application.log`` and stderr at ``config.log_level``.

    Calling it again replaces the handlers installed by the previous call.
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = _resolve_level(config.log_level)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8"),
            logging.StreamHandler(),
        ],
        force=True,
    )
    # The genai SDK logs every HTTP round-trip at INFO through httpx.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logger = logging.getLogger(APP_LOGGER)
    logger.debug("Logging to %s at %s", log_dir / LOG_FILENAME, logging.getLevelName(level))
    return logger
