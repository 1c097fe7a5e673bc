"""
Logging configuration for mfdshed.

Logs to stderr by default. If MFDSHED_LOG_FILE is set (or a log file is
passed), also logs to that file.
"""

import logging
import os
import sys
from pathlib import Path

from mfdshed.config.defaults import ENV_LOG_FILE

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: str | Path | None = None) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        verbose: Enable debug logging
        quiet: Suppress all logging except errors
        log_file: Optional extra log file (default: MFDSHED_LOG_FILE)

    Returns:
        The package logger
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    # Remove handlers from a previous call so repeated setup does not duplicate output
    for handler in list(root.handlers):
        if getattr(handler, "_mfdshed", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler._mfdshed = True  # type: ignore[attr-defined]
    root.addHandler(stream_handler)

    log_file = log_file or os.getenv(ENV_LOG_FILE)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        file_handler._mfdshed = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    return logging.getLogger("mfdshed")
