"""Logging configuration using loguru.

Console output stays terse, because the prompter already tells the user what
happened; the log is for diagnosing sync problems.  Records from httpx and
anyio are routed through loguru so everything lands in one place.  An
optional log file in the workspace state directory keeps full detail.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = "<level>{level: <8}</level> | <level>{message}</level>"
_DEBUG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

LOG_FILE = "quantsync.log"


class _StdlibBridge(logging.Handler):
    """Forward stdlib records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", log_dir: str | Path | None = None) -> None:
    """Make loguru the only sink for this CLI run.

    *log_dir* adds a rotating DEBUG-level file sink next to the session state.
    """
    level = level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=_DEBUG_FORMAT if level == "DEBUG" else _CONSOLE_FORMAT)
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(Path(log_dir) / LOG_FILE, level="DEBUG", format=_FILE_FORMAT, rotation="1 MB", retention=3)

    logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)

    # Request lines would echo the Authorization header at DEBUG.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={}, log_dir={})", level, log_dir)
