"""Logging setup for the command line entry point."""

from __future__ import annotations

import logging
from typing import Final

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
# One INFO line per request or migration step drowns out hydration progress.
CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "alembic.runtime.migration")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Configure the root logger for CLI output.

    Request-level chatter from httpx and alembic is only shown with DEBUG.
    Pass ``force=True`` to replace handlers installed earlier.
    """

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=force)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)
