"""Logging configuration with correlation IDs and secret redaction.

Each camera session runs under its own correlation ID so that the log lines of
one open-to-close lifecycle can be grepped together.
"""
import json
import logging
import logging.handlers
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class CorrelationIDFilter(logging.Filter):
    """Filter to add correlation IDs to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get() or 'no-session'
        return True


class SecuritySafeFormatter(logging.Formatter):
    """Formatter that redacts API keys and tokens from log messages."""

    SENSITIVE_PATTERNS = [
        (re.compile(r'(?i)(api[_-]?key["\s]*[:=]["\s]*)[a-zA-Z0-9_-]+'), r'\1[REDACTED]'),
        (re.compile(r'(?i)(token["\s]*[:=]["\s]*)[a-zA-Z0-9_-]+'), r'\1[REDACTED]'),
        (re.compile(r'AIza[0-9A-Za-z_-]{35}'), '[REDACTED]'),
    ]

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            formatted = pattern.sub(replacement, formatted)
        return formatted


class StructuredFormatter(SecuritySafeFormatter):
    """Structured JSON formatter for production logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'no-session'),
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info),
            }

        formatted = json.dumps(log_entry, default=str)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            formatted = pattern.sub(replacement, formatted)
        return formatted


class HumanReadableFormatter(SecuritySafeFormatter):
    """Human-readable formatter for development and console output."""

    def __init__(self, include_correlation_id: bool = True):
        format_string = (
            '%(asctime)s - %(name)s - %(levelname)s'
            + (' - %(correlation_id)s' if include_correlation_id else '')
            + ' - %(message)s'
        )
        super().__init__(format_string)


class LoggingManager:
    """Central logging manager for the application."""

    def __init__(self):
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}

    def configure(
        self,
        log_level: str = 'INFO',
        log_dir: Optional[Union[str, Path]] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
        structured_logging: bool = False,
        max_file_size: int = 5 * 1024 * 1024,
        backup_count: int = 3,
        application_name: str = 'purescan'
    ) -> None:
        """Configure logging for the application.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (defaults to ./logs)
            enable_file_logging: Enable rotating log files
            enable_console_logging: Enable console logging
            structured_logging: Use structured JSON logging
            max_file_size: Maximum size of log files before rotation
            backup_count: Number of backup files to keep
            application_name: Name used for log files
        """
        if self._configured:
            return

        level = getattr(logging, log_level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationIDFilter()
        formatter: logging.Formatter = (
            StructuredFormatter() if structured_logging
            else HumanReadableFormatter(include_correlation_id=True)
        )

        if enable_console_logging:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter)
            console_handler.addFilter(correlation_filter)
            root_logger.addHandler(console_handler)
            self._handlers['console'] = console_handler

        if enable_file_logging:
            directory = Path(log_dir or 'logs')
            directory.mkdir(parents=True, exist_ok=True)

            app_handler = logging.handlers.RotatingFileHandler(
                directory / f'{application_name}.log',
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            app_handler.setLevel(level)
            app_handler.setFormatter(formatter)
            app_handler.addFilter(correlation_filter)
            root_logger.addHandler(app_handler)
            self._handlers['application'] = app_handler

            error_handler = logging.handlers.RotatingFileHandler(
                directory / f'{application_name}-errors.log',
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            error_handler.addFilter(correlation_filter)
            root_logger.addHandler(error_handler)
            self._handlers['errors'] = error_handler

        self._configure_specific_loggers()
        self._configured = True
        logging.info(f"Logging configured - Level: {log_level}, File: {enable_file_logging}, Console: {enable_console_logging}")

    def _configure_specific_loggers(self) -> None:
        """Suppress verbose third-party library logs."""
        logging.getLogger('PIL').setLevel(logging.WARNING)
        logging.getLogger('ultralytics').setLevel(logging.WARNING)
        logging.getLogger('httpx').setLevel(logging.WARNING)
        logging.getLogger('google_genai').setLevel(logging.WARNING)

    def set_correlation_id(self, corr_id: Optional[str] = None) -> str:
        """Set correlation ID for current context."""
        if corr_id is None:
            corr_id = uuid.uuid4().hex[:12]
        correlation_id.set(corr_id)
        return corr_id

    def get_correlation_id(self) -> Optional[str]:
        return correlation_id.get()

    def clear_correlation_id(self) -> None:
        correlation_id.set(None)

    def shutdown(self) -> None:
        """Close all handlers."""
        for handler in self._handlers.values():
            handler.close()
        self._handlers.clear()
        self._configured = False


# Global logging manager instance
logging_manager = LoggingManager()


def configure_logging(**kwargs) -> None:
    """Configure application logging."""
    logging_manager.configure(**kwargs)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set correlation ID for current context."""
    return logging_manager.set_correlation_id(corr_id)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return logging_manager.get_correlation_id()
