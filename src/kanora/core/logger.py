"""Logging configuration and setup."""

import sys

from loguru import logger

from kanora.core.config import settings


def setup_logging() -> None:
    """Configures Loguru logging for console and file output.

    Removes the default handler, adds a colorized stderr sink and a rotated,
    compressed log file in the data directory. The file sink is enqueued so
    the job worker and request handlers never block on disk writes.
    """
    logger.remove()
    logger.configure(extra={"request_id": "-"})  # Default for worker/CLI context

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[request_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )

    log_file = settings.DATA_DIR / "logs" / "kanora.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(log_file),
        rotation=settings.LOG_ROTATION,
        retention=settings.LOG_RETENTION,
        compression="zip",
        level=settings.LOG_LEVEL,
        enqueue=True,
        backtrace=True,
        diagnose=True,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[request_id]} | {name}:{function}:{line} - {message}",
    )

    logger.info(f"Logging initialized. Data Dir: {settings.DATA_DIR}")
