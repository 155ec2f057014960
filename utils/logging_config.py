"""
Logging configuration for the analysis engine.

Provides centralized logging setup with appropriate levels and formatting
for the orchestrator, analyzers and CLI.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
ROOT_LOGGERS = ('analysis', 'repositories', 'utils', 'scripts')


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True
) -> logging.Logger:
    """
    Set up logging for every package of the project.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        console: Whether to enable console logging

    Returns:
        The 'analysis' logger
    """
    numeric_level = getattr(logging, level.upper())
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = []
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for name in ROOT_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        # Remove existing handlers to avoid duplicates
        logger.handlers.clear()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False

    return logging.getLogger('analysis')


def get_logger(name: str = 'analysis') -> logging.Logger:
    """Get a logger instance under the 'analysis' namespace."""
    if name == 'analysis' or name.startswith('analysis.'):
        return logging.getLogger(name)
    return logging.getLogger(f'analysis.{name}')
