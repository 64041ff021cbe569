"""
Logging configuration and utilities.

This module sets up consistent logging across the platform.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


def setup_logger(
    name: str = 'retz_engine',
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger with console and file handlers.

    Args:
        name: Logger name
        log_file: Optional path to log file
        level: Logging level (default: INFO)
        format_string: Optional custom format string

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger(
        >>>     name='retz_engine',
        >>>     log_file='logs/run.log',
        >>>     level=logging.DEBUG
        >>> )
        >>> logger.info("Driver started")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    # Default format
    if format_string is None:
        format_string = '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s'

    formatter = logging.Formatter(format_string, datefmt='%Y-%m-%d %H:%M:%S')

    # Console handler. Job output goes to stdout, so logs go to stderr.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def create_task_logger(
    log_dir: Path,
    attempt_id: str,
    name: str = 'retz_engine',
    level: int = logging.INFO
) -> logging.Logger:
    """
    Create a logger for one task attempt with file output.

    Args:
        log_dir: Directory holding per-attempt log files
        attempt_id: Attempt identifier, used in the file name
        name: Logger name
        level: Logging level

    Returns:
        Configured task logger

    Example:
        >>> logger = create_task_logger(Path('logs'), '12345')
        >>> logger.info("Tick 1")
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = log_dir / f'{attempt_id}_{timestamp}.log'

    return setup_logger(
        name=name,
        log_file=str(log_file),
        level=level
    )


def log_config(logger: logging.Logger, config: dict, title: str = "Configuration") -> None:
    """
    Log configuration dictionary in a readable format.

    Args:
        logger: Logger instance
        config: Configuration dictionary
        title: Title for the log section

    Example:
        >>> log_config(logger, spec.summary(), title="Job Spec")
    """
    logger.info("=" * 60)
    logger.info(title)
    logger.info("=" * 60)

    def log_dict(d: dict, indent: int = 0):
        for key, value in d.items():
            if isinstance(value, dict):
                logger.info("  " * indent + f"{key}:")
                log_dict(value, indent + 1)
            else:
                logger.info("  " * indent + f"{key}: {value}")

    log_dict(config)
    logger.info("=" * 60)

