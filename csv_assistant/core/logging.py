"""
Structured logging configuration.

Provides JSON logging for production and readable text format for development.
Records carry a correlation id (per HTTP request) and, inside the
orchestrator, the session id.
"""
import os
import sys
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict

_STANDARD_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'thread', 'threadName',
    'exc_info', 'exc_text', 'message', 'taskName', 'correlation_id', 'session_id',
))


class ContextFilter(logging.Filter):
    """Guarantee correlation_id and session_id exist on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = 'system'
        if not hasattr(record, 'session_id'):
            record.session_id = '-'
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": getattr(record, 'correlation_id', 'system'),
        }
        session_id = getattr(record, 'session_id', '-')
        if session_id != '-':
            log_data['session_id'] = session_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Readable text formatter for development."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] [%(session_id)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def configure_logging(log_level: str = None) -> None:
    """
    Configure application logging based on environment.

    Uses LOG_FORMAT env var:
    - 'json': Structured JSON logging (recommended for production)
    - 'text': Human-readable format (default for development)
    """
    log_format = os.getenv('LOG_FORMAT', 'text').lower()
    log_level = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if log_format == 'json' else TextFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    for noisy in ('uvicorn.access', 'httpx', 'httpcore', 'groq', 'google'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if log_format == 'json':
        root_logger.info("Structured JSON logging enabled")


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Attach a session id to every record emitted through the adapter."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra.setdefault('session_id', self.extra.get('session_id', '-'))
        kwargs['extra'] = extra
        return msg, kwargs
