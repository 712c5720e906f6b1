# Logger - Centralized Logging System
# Singleton registry so each named logger gets its handlers only once

"""
Logger Module

Responsibilities:
- Setup centralized logging with singleton pattern
- Configure log levels
- Configure log handlers (console, rotating file)
- Log formatting
- Prevent duplicate handler registration
"""

import logging
import sys
import atexit
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

# Global registry to track configured loggers
_configured_loggers = {}

# One rotating handler per log file, shared by every logger writing to it
_file_handlers = {}

# Defaults applied to loggers created without explicit settings
_defaults = {
    'level': "INFO",
    'log_file': None
}

_formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

def _file_handler(log_file: str) -> RotatingFileHandler:
    if log_file in _file_handlers:
        return _file_handlers[log_file]

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=10485760,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    handler.setFormatter(_formatter)
    handler.setLevel(logging.DEBUG)  # File gets all levels
    _file_handlers[log_file] = handler
    return handler

def setup_logger(name: str = "pingwatch", level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Setup logger with console and file handlers (singleton pattern)

    Returns the existing logger if already configured, so repeated calls
    never stack duplicate handlers.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL),
            defaults to the level set by configure_logging()
        log_file: Optional log file path, defaults to the configured file

    Returns:
        Configured logger instance (existing or new)
    """
    if name in _configured_loggers:
        return _configured_loggers[name]

    logger = logging.getLogger(name)

    if logger.handlers:
        _configured_loggers[name] = logger
        return logger

    level = level or _defaults['level']
    log_file = log_file or _defaults['log_file']

    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False  # Prevent propagation to root logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_formatter)
    logger.addHandler(console_handler)

    if log_file:
        logger.addHandler(_file_handler(log_file))

    _configured_loggers[name] = logger
    return logger

def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Set level and log file for all loggers, existing and future

    Args:
        level: Log level name
        log_file: Optional log file path
    """
    _defaults['level'] = level
    _defaults['log_file'] = log_file

    numeric_level = getattr(logging, level.upper())
    for logger in _configured_loggers.values():
        logger.setLevel(numeric_level)
        has_file = any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
        if log_file and not has_file:
            logger.addHandler(_file_handler(log_file))

@atexit.register
def _cleanup_handlers():
    """Close all handlers properly to prevent resource leaks."""
    for logger in _configured_loggers.values():
        for handler in logger.handlers[:]:
            try:
                handler.close()
                logger.removeHandler(handler)
            except Exception:
                pass  # Ignore errors during cleanup
