"""
Logging Configuration - Structured logging setup for the image system

Part of the AgroLink Image Integration System.
Infrastructure Layer

Production uses a structlog JSON pipeline on top of stdlib handlers; every
other environment gets readable console output. Event log records carry their
structured context through ``extra`` and are nested by ``JSONFormatter``.

License: MIT
"""

import logging
import logging.config
import logging.handlers
import sys
import os
import json
from typing import Any, Dict, List, Optional
from datetime import datetime

import structlog

from ..config import LoggingConfig

DEFAULT_MAX_FILE_SIZE = 10485760  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_RECORD_KEYS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'getMessage', 'taskName', 'message', 'asctime',
])

_FORMATTERS: Dict[str, Dict[str, str]] = {
    'simple': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    },
    'detailed': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s - %(message)s'
    },
    'json': {
        '()': 'image_system.infrastructure.logging_config.JSONFormatter'
    },
}

# HTTP client chatter drowns out provider usage events at DEBUG
_EXTERNAL_LOGGERS = {
    'httpx': logging.WARNING,
    'httpcore': logging.WARNING,
    'asyncio': logging.WARNING,
}


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    log_file: Optional[str] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> None:
    """
    Setup logging for the image system.

    Environment variables ``LOG_LEVEL``, ``LOG_FORMAT`` and ``LOG_FILE`` take
    precedence over the arguments. ``ENVIRONMENT=production`` selects the
    structlog JSON pipeline.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Format type ('structured', 'simple', 'detailed', 'json')
        log_file: Optional log file path
        max_file_size: Rotation threshold for the file handler in bytes
        backup_count: Rotated files kept
    """
    log_level = os.getenv("LOG_LEVEL", level).upper()
    log_format = os.getenv("LOG_FORMAT", format_type).lower()
    log_file_path = os.getenv("LOG_FILE", log_file)

    if os.getenv("ENVIRONMENT", "development") == "production":
        setup_production_logging(log_level, log_file_path, max_file_size, backup_count)
    else:
        setup_development_logging(log_level, log_format, log_file_path)

    configure_external_loggers()


def setup_logging_from_config(config: LoggingConfig) -> None:
    """Apply a ``LoggingConfig`` section."""
    setup_logging(
        level=config.level,
        format_type=config.format_type,
        log_file=config.log_file,
        max_file_size=config.max_file_size,
        backup_count=config.backup_count,
    )


def build_logging_config(
    level: str,
    formatter: str,
    log_file: Optional[str] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> Dict[str, Any]:
    """
    Build a ``dictConfig`` mapping with a console handler and an optional
    rotating file handler, both using ``formatter``.

    Args:
        level: Logging level for the root logger and handlers
        formatter: One of 'simple', 'detailed' or 'json'
        log_file: Optional log file path
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files kept

    Raises:
        ValueError: If the formatter name is unknown
    """
    if formatter not in _FORMATTERS:
        raise ValueError(f"Unknown log formatter: {formatter}")

    handlers: Dict[str, Dict[str, Any]] = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': level,
            'formatter': formatter,
            'stream': sys.stdout,
        }
    }
    if log_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': level,
            'formatter': formatter,
            'filename': log_file,
            'maxBytes': max_file_size,
            'backupCount': backup_count,
        }

    handler_names: List[str] = list(handlers)
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {formatter: _FORMATTERS[formatter]},
        'handlers': handlers,
        'root': {'level': level, 'handlers': handler_names},
    }


def setup_production_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> None:
    """
    Setup production logging with structured JSON format.

    structlog loggers render JSON themselves; records from plain stdlib
    loggers (including the event log mirror) go through ``JSONFormatter``.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        build_logging_config(level, 'json', log_file, max_file_size, backup_count)
    )

    structlog.get_logger(__name__).info(
        "Production logging configured",
        level=level,
        format="structured_json",
        file_logging=log_file is not None,
    )


def setup_development_logging(
    level: str = "DEBUG",
    format_type: str = "simple",
    log_file: Optional[str] = None,
) -> None:
    """
    Setup development logging with readable format.

    Args:
        level: Logging level
        format_type: 'simple', 'detailed' or 'json'; anything else
            (including 'structured') falls back to 'simple'
        log_file: Optional log file path
    """
    if format_type not in _FORMATTERS:
        format_type = "simple"

    logging.config.dictConfig(build_logging_config(level, format_type, log_file))

    logging.getLogger(__name__).info(f"Development logging configured: level={level}, format={format_type}")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Event log entries carry ``event_context`` and ``event_metadata`` extras,
    which are emitted as nested ``context`` and ``metadata`` objects.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith('_'):
                continue
            if key == 'event_context':
                log_entry['context'] = value
            elif key == 'event_metadata':
                log_entry['metadata'] = value
            else:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def configure_external_loggers() -> None:
    """Quiet the HTTP client libraries."""
    for logger_name, level in _EXTERNAL_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)
