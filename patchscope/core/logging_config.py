"""Logging configuration with correlation IDs and redaction of secrets.

Every backend request (search, attention analysis, model discovery) runs in
a :class:`CorrelationContext` so the log lines of one request can be
followed across the worker thread and the UI callbacks.
"""
import json
import logging
import logging.handlers
import re
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

NO_CORRELATION_ID = 'no-correlation-id'

_correlation_id: ContextVar[Optional[str]] = ContextVar('patchscope_correlation_id', default=None)

# Credentials can show up in backend URLs or echoed request metadata
REDACTIONS = (
    (re.compile(r'(?i)(api[_-]?key["\s]*[:=]["\s]*)[a-zA-Z0-9_-]+'), r'\1[REDACTED]'),
    (re.compile(r'(?i)(token["\s]*[:=]["\s]*)[a-zA-Z0-9_.-]+'), r'\1[REDACTED]'),
    (re.compile(r'(?i)(authorization["\s]*[:=]["\s]*)(bearer\s+)?[^\s"]+'), r'\1[REDACTED]'),
    (re.compile(r'(?i)(https?://)[^/\s:@]+:[^/\s@]+@'), r'\1[REDACTED]@'),
)

_STANDARD_RECORD_FIELDS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime', 'correlation_id', 'taskName',
}


def redact(text: str) -> str:
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set the ID for the current context, generating one if needed."""
    corr_id = corr_id or new_correlation_id()
    _correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


class CorrelationContext:
    """Scope log lines to one request.

    Nested contexts restore the outer ID on exit. Passing an existing ID
    continues that request's trail on another thread.
    """

    def __init__(self, corr_id: Optional[str] = None):
        self.corr_id = corr_id
        self._token: Optional[Token] = None

    def __enter__(self) -> str:
        corr_id = self.corr_id or new_correlation_id()
        self._token = _correlation_id.set(corr_id)
        return corr_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _correlation_id.reset(self._token)
        self._token = None


class CorrelationIDFilter(logging.Filter):
    """Stamp records with the active correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get() or NO_CORRELATION_ID
        return True


class SecuritySafeFormatter(logging.Formatter):
    """Formatter whose output never contains known credential shapes."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


class HumanReadableFormatter(SecuritySafeFormatter):
    """Console and plain-file output."""

    def __init__(self, include_correlation_id: bool = True):
        self.include_correlation_id = include_correlation_id
        request = ' [%(correlation_id)s]' if include_correlation_id else ''
        super().__init__(f'%(asctime)s %(levelname)-8s %(name)s{request}: %(message)s')


class StructuredFormatter(SecuritySafeFormatter):
    """One JSON object per line, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', NO_CORRELATION_ID),
            'location': f'{record.module}:{record.funcName}:{record.lineno}',
            'thread': record.threadName,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info),
            }

        extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_RECORD_FIELDS}
        if extra:
            entry['extra'] = extra

        return redact(json.dumps(entry, default=str))


class LoggingManager:
    """Owns the root handlers installed by :meth:`configure`."""

    QUIET_LOGGERS = ('PIL', 'urllib3', 'requests')

    def __init__(self):
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: str = 'INFO',
        log_dir: Optional[Union[str, Path]] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
        structured_logging: bool = False,
        max_file_size: int = 5 * 1024 * 1024,
        backup_count: int = 3,
        application_name: str = 'patchscope'
    ) -> None:
        """Install console and rotating file handlers on the root logger.

        Args:
            log_level: Level name; unknown names fall back to INFO
            log_dir: Directory for log files (default ``logs``)
            enable_file_logging: Write ``<application_name>.log`` and an
                errors-only ``<application_name>-errors.log``
            enable_console_logging: Log to stdout
            structured_logging: JSON lines in the log files
            max_file_size: Rotation threshold in bytes
            backup_count: Rotated files to keep
            application_name: Log file base name

        Calling again before :meth:`shutdown` does nothing.
        """
        if self._configured:
            return

        level = getattr(logging, str(log_level).upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if enable_console_logging:
            self._install('console', logging.StreamHandler(sys.stdout), level, HumanReadableFormatter())

        if enable_file_logging:
            directory = Path(log_dir) if log_dir else Path('logs')
            directory.mkdir(parents=True, exist_ok=True)
            file_formatter = StructuredFormatter() if structured_logging else HumanReadableFormatter()

            def rotating(name: str) -> logging.Handler:
                return logging.handlers.RotatingFileHandler(
                    directory / name, maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'
                )

            self._install('application', rotating(f'{application_name}.log'), level, file_formatter)
            self._install('errors', rotating(f'{application_name}-errors.log'), logging.ERROR, file_formatter)

        for name in self.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        self._configured = True
        logging.getLogger(__name__).info(
            f"Logging configured at {logging.getLevelName(level)} "
            f"(console={enable_console_logging}, files={enable_file_logging})"
        )

    def _install(self, key: str, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIDFilter())
        logging.getLogger().addHandler(handler)
        self._handlers[key] = handler

    def shutdown(self) -> None:
        """Close all handlers and allow reconfiguration."""
        root_logger = logging.getLogger()
        for handler in self._handlers.values():
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        self._configured = False


logging_manager = LoggingManager()


def configure_logging(**kwargs) -> None:
    """Configure application logging."""
    logging_manager.configure(**kwargs)
