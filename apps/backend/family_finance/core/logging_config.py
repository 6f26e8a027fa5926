from __future__ import annotations

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the package logger.

    Safe to call more than once; later calls only adjust the level.
    """
    logger = logging.getLogger("family_finance")
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    if not any(getattr(h, "_family_finance", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._family_finance = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
