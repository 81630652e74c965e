"""Logging for the field service scheduler.

Everything goes through loguru. Records emitted by libraries on the stdlib
`logging` module (uvicorn, SQLAlchemy, APScheduler, Celery) are forwarded to
loguru by InterceptHandler, tagged with their stdlib logger name. Keyword
arguments passed to logger calls (plan_id, org_id, count, ...) land in
`extra` and are rendered after the message, or as JSON fields when
serialize is on.
"""

import inspect
import logging
import sys
from pathlib import Path

from loguru import logger

SERVICE_NAME = "fieldservice-scheduler"

# Library loggers that are too chatty at INFO
QUIET_LOGGERS: dict[str, int] = {
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler.executors": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> {extra}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message} {extra}"


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so {name}:{function}:{line} point at the library caller
        frame, depth = inspect.currentframe(), 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(stdlib_logger=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def intercept_stdlib_logging(level: str = "INFO") -> None:
    """Route the root stdlib logger (and everything propagating to it) into loguru."""
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.getLevelName(level), force=True)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(quiet_level, logging.getLevelName(level)))
    # Uvicorn installs its own handlers; drop them so its records reach the root handler once
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    *,
    serialize: bool = False,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru with console and optional file output, and take over stdlib logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        serialize: Write the file sink as one JSON object per line
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()
    logger.configure(extra={"service": SERVICE_NAME})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            serialize=serialize,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    intercept_stdlib_logging(level)
    logger.info(f"Logger initialized with level={level}", log_file=log_file)
