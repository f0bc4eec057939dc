"""
Logging setup shared by the server, marketplace and assistant modules

All loggers live under the "agribuddy" namespace and write to the console
and to one rotating log file (or a dedicated file when asked).
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional
from .config import settings

ROOT_LOGGER = "agribuddy"
DEFAULT_LOG_FILE = "agribuddy.log"

_file_handlers: Dict[str, logging.Handler] = {}
_console_handler: Optional[logging.Handler] = None

def _console() -> logging.Handler:
    global _console_handler
    if _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stdout)
        _console_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        ))
    return _console_handler

def _file(log_file: str) -> logging.Handler:
    handler = _file_handlers.get(log_file)
    if handler is None:
        handler = RotatingFileHandler(
            settings.LOGS_PATH / log_file,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        _file_handlers[log_file] = handler
    return handler

def setup_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """
    Get the logger for a module

    Args:
        name: Module name (usually __name__)
        log_file: Dedicated file under LOGS_PATH instead of the shared one

    Returns:
        Configured logger named agribuddy.<name>
    """
    full_name = name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"
    logger = logging.getLogger(full_name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    if logger.handlers:
        return logger

    logger.addHandler(_console())
    logger.addHandler(_file(log_file or DEFAULT_LOG_FILE))
    logger.propagate = False
    return logger
