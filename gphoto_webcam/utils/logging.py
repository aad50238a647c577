"""
Structured logging for gphoto-webcam.

structlog is configured on top of the stdlib root logger so that both
structlog loggers and plain logging.getLogger() loggers share handlers.
Console output goes to stderr; an optional rotating file handler always
writes JSON.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TextIO

import structlog


class LogLevel(Enum):
    """Log levels for structured logging."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LogFormat(Enum):
    """Available log formats."""
    JSON = "json"
    TEXT = "text"
    COLORED = "colored"


_RESERVED_RECORD_KEYS = frozenset((
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'message', 'taskName',
))


class JSONFormatter(logging.Formatter):
    """JSON formatter for file and machine-readable output."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname.lower(),
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process
        }

        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        if extra_fields:
            log_obj['extra'] = extra_fields

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m'    # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        colored_level = f"{color}{record.levelname}{self.RESET}"

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        base_msg = f"[{timestamp}] {colored_level} {record.name}: {record.getMessage()}"

        if record.levelno >= logging.ERROR:
            base_msg += f" ({record.filename}:{record.lineno})"

        return base_msg


class LoggingConfig:
    """Configuration for the logging system."""

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        format: LogFormat = LogFormat.COLORED,
        log_file: Optional[str] = None,
        max_file_size_mb: int = 10,
        backup_count: int = 3,
        console_output: bool = True,
        stream: Optional[TextIO] = None
    ):
        self.level = level
        self.format = format
        self.log_file = log_file
        self.max_file_size_mb = max_file_size_mb
        self.backup_count = backup_count
        self.console_output = console_output
        self.stream = stream


class WebcamLogger:
    """Main logging interface for the application."""

    def __init__(self, config: Optional[LoggingConfig] = None):
        self.config = config or LoggingConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Set up structured logging based on configuration."""
        renderer = (
            structlog.processors.JSONRenderer()
            if self.config.format == LogFormat.JSON
            else structlog.dev.ConsoleRenderer(colors=self.config.format == LogFormat.COLORED)
        )
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
                renderer,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.config.level.value.upper()))

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        if self.config.console_output:
            console_handler = logging.StreamHandler(self.config.stream or sys.stderr)

            if self.config.format == LogFormat.JSON:
                formatter = JSONFormatter()
            elif self.config.format == LogFormat.COLORED:
                formatter = ColoredFormatter()
            else:
                formatter = logging.Formatter(
                    '[%(asctime)s] %(levelname)s %(name)s: %(message)s'
                )

            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

        if self.config.log_file:
            log_path = Path(self.config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.config.log_file,
                maxBytes=self.config.max_file_size_mb * 1024 * 1024,
                backupCount=self.config.backup_count
            )
            # Always use JSON format for file output
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)

    def get_logger(self, name: str) -> structlog.stdlib.BoundLogger:
        """Get a structured logger instance."""
        return structlog.get_logger(name)


_global_logger: Optional[WebcamLogger] = None


def setup_logging(
    config: Optional[LoggingConfig] = None,
    level: Optional[LogLevel] = None
) -> WebcamLogger:
    """Set up global logging configuration."""
    global _global_logger
    config = config or LoggingConfig()
    if level is not None:
        config.level = level
    _global_logger = WebcamLogger(config)
    return _global_logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance with the given name."""
    if _global_logger is None:
        setup_logging()
    return _global_logger.get_logger(name)


def log_pipeline_event(
    logger: structlog.stdlib.BoundLogger,
    event: str,
    state: Optional[str] = None,
    **context: Any
):
    """Log a pipeline event with standard context."""
    log_context = {
        'event_type': 'pipeline',
        'pipeline_event': event,
        **context
    }

    if state:
        log_context['state'] = state

    logger.info("Pipeline event", **log_context)


def log_error_with_context(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    operation: str,
    **context: Any
):
    """Log an error with comprehensive context."""
    log_context = {
        'event_type': 'error',
        'operation': operation,
        'error_type': type(error).__name__,
        'error_message': str(error),
        **context
    }

    logger.error("Operation failed", **log_context)
