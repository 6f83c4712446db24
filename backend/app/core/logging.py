from __future__ import annotations

import logging
import sys

from backend.app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """
    Configure the "backend" logger hierarchy once.

    Services log through logging.getLogger(__name__), so everything under
    backend.* ends up on this handler.
    """
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)

    logger = logging.getLogger("backend")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    logger.propagate = False
    return logger
