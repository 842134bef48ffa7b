"""
Logging setup for the timetable engine.

Modules log through logging.getLogger(__name__), so everything lives under
the "timetable_app" logger. configure_logging() is called once by the CLI;
library callers can attach their own handlers instead.

Reference: Python docs — logging HOWTO, "Configuring Logging for a Library"
https://docs.python.org/3/howto/logging.html
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "timetable_app"

logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


def configure_logging(level: Union[int, str] = "INFO",
                      log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    # Prevent duplicate handlers if called more than once
    for h in list(logger.handlers):
        if not isinstance(h, logging.NullHandler):
            logger.removeHandler(h)
            h.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(stream_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    return logger
