# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Logging configuration for the swap matching engine."""

import logging
import sys
from typing import TextIO

from swapmatch.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers held at WARNING unless the app runs at DEBUG
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "apscheduler")


def resolve_level(name: str | None = None) -> int:
    """Translate a level name into a logging constant.

    Args:
        name: Level name such as "DEBUG". Defaults to the configured level.

    Returns:
        Logging level constant; INFO for unknown names.
    """
    if name is None:
        name = get_settings().log_level
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def setup_logging(
    level: int | None = None,
    stream: TextIO | None = None,
) -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Logging level. Defaults to the configured level.
        stream: Output stream. Defaults to stderr.
    """
    if level is None:
        level = resolve_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)

    library_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    # Access logs stay at INFO or quieter
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))
