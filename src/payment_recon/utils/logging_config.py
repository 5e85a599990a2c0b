"""Logging configuration for the reconciliation engine."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for the ``payment_recon`` package.

    Console records go to stderr through rich. When ``log_file`` is given,
    every record including DEBUG is also written to a rotating file.

    Args:
        level: Console logging level (e.g., logging.DEBUG, logging.INFO)
        log_file: Optional path to the rotating log file
        log_format: Format of file records (the console layout is rich's own)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("payment_recon")
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.propagate = False

    # Repeated CLI invocations in one process must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
        logger.addHandler(file_handler)

    return logger
