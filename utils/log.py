# Copyright (C) 2026 grodz
#
# This file is part of Matinee.
#
# Matinee is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Logging setup for Matinee."""

import logging
import sys

from loguru import logger


# Friendly level names used in settings.yaml / LOG_LEVEL
LOG_LEVELS = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
    "<level>[{level: <6}]</level> "
    "<cyan>{name}</cyan>: {message}"
)

# discord.py loggers that are noisy at INFO
LIBRARY_LOGGERS = ("discord", "discord.client", "discord.gateway", "discord.voice_state", "discord.player")


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records (discord.py) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the log call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def resolve_level(name: str) -> str:
    """Map a friendly level name to a loguru level name. Unknown names fall back to INFO."""
    return LOG_LEVELS.get(str(name).strip().lower(), "INFO")


def setup_logging(level: str = "verbose") -> str:
    """Configure loguru sinks and route library logging through them.

    Args:
        level: "minimal", "verbose" or "debug"

    Returns:
        The loguru level name that was applied
    """
    loguru_level = resolve_level(level)

    # NOTICE sits between INFO and WARNING: startup facts worth seeing in minimal mode
    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=25, color="<blue><bold>")

    logger.remove()
    logger.add(sys.stderr, level=loguru_level, format=LOG_FORMAT, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Keep discord.py quiet unless debugging
    library_level = logging.DEBUG if loguru_level == "DEBUG" else logging.WARNING
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return loguru_level
