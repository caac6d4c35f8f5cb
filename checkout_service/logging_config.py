"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
optionally, to a file.

Features:
    • Console output (stdout) plus an optional persistent log file
    • Process ID tagging for multi-worker visibility
    • Standardized log format for all modules
    • Reduced verbosity for the HTTP client libraries (httpx, httpcore)
"""

import logging
import sys
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from LOG_LEVEL (default INFO)
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Render compatible
            2. File: only when LOG_FILE is configured
        - Reduced verbosity for third-party libraries such as httpx

    Args:
        level (str): Name of the root log level (e.g. "INFO", "DEBUG").
        log_file (str, optional): Path of an additional log file.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
