import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '1.0.0'

PROG_NAME = 'zfsborg'

logger = logging.getLogger(PROG_NAME)


class _BelowWarningFilter(logging.Filter):
    """Let through only records that belong on stdout."""

    def filter(self, record):
        return record.levelno < logging.WARNING


def configure_logging(verbose: bool = False, log_file: Optional[str] = None):
    """
    Configure application logging.

    Progress goes to stdout with a timestamp, warnings and errors go to
    stderr prefixed with the program name.

    Args:
        verbose: Enable DEBUG level output
        log_file: Optional path of a rotating log file
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler (progress)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(_BelowWarningFilter())
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Error handler
    error_handler = logging.StreamHandler(sys.stderr)
    error_handler.setLevel(logging.WARNING)
    error_handler.setFormatter(logging.Formatter(f'{PROG_NAME}: %(message)s'))

    handlers = [console_handler, error_handler]

    # File handler
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
