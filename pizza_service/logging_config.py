"""
logging_config.py — Centralized Logging Configuration for the Pizza Service

Every module logs through the root logger configured here, so request
handlers, the checkout workflow and the outbound clients share one format
and one set of destinations.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-worker deployments
    • Reduced verbosity for the HTTP client libraries (httpx, httpcore)
"""

import logging
import sys

from . import config

LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'


def setup_logging(log_file=None, level=None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from LOG_LEVEL (default INFO)
        - Output destinations:
            1. File: LOG_FILE (persistent log, skipped when empty)
            2. Console (stdout): container friendly
        - WARNING level for httpx/httpcore, whose request logs would
          otherwise duplicate our own payment and mail logging

    Args:
        log_file (str, optional): Overrides config.LOG_FILE.
        level (str, optional): Overrides config.LOG_LEVEL.
    """
    log_file = config.LOG_FILE if log_file is None else log_file
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
