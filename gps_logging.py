"""Logging setup shared by the command line tools and GPS Studio, using loguru."""

import sys
from pathlib import Path

from loguru import logger

STDERR_FORMAT = "<level>{level: <8}</level> | {message}"


def init_logging(verbose=False, log_file=None):
    """
    Route diagnostics to stderr, and optionally to a rotating log file.

    Report output of the tools is printed, not logged; the stderr sink only
    shows warnings unless `verbose` is set.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=STDERR_FORMAT,
        backtrace=False,
        diagnose=False,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            rotation="10 MB",
            retention="10 days",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            level="DEBUG",
        )
