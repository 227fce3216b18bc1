"""Logging setup: correlation IDs, credential redaction and rotating log files.

Each detection cycle runs inside a ``CorrelationContext`` (``cycle-<n>``),
so the capture, detect, crop and send lines of one cycle share an id.
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

_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# recognition endpoints may carry credentials in the query string
_SENSITIVE_PATTERNS = [
    (re.compile(r'(?i)(token["\s]*[:=]["\s]*)[a-zA-Z0-9_.-]+'), r'\1[REDACTED]'),
    (re.compile(r'(?i)(password["\s]*[:=]["\s]*)[^\s"&]+'), r'\1[REDACTED]'),
    (re.compile(r'(?i)(api[_-]?key["\s]*[:=]["\s]*)[a-zA-Z0-9_-]+'), r'\1[REDACTED]'),
    (re.compile(r'(wss?://[^:/\s]+:)[^@\s]+@'), r'\1[REDACTED]@'),
]


def redact(text: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class CorrelationIDFilter(logging.Filter):
    """Stamps ``record.correlation_id`` ('-' outside a correlation context)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get() or '-'
        return True


class SecuritySafeFormatter(logging.Formatter):
    """Plain formatter that redacts credentials."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    _STANDARD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
        'message', 'correlation_id', 'taskName',
    }

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', '-'),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        extra = {k: v for k, v in vars(record).items() if k not in self._STANDARD_ATTRS}
        if extra:
            entry['extra'] = extra

        return redact(json.dumps(entry, default=str))


class HumanReadableFormatter(SecuritySafeFormatter):
    """Console format: time, logger, level, correlation id, message."""

    def __init__(self):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s')


class LoggingManager:
    """Installs and removes the application's root log handlers."""

    QUIET_LOGGERS = ('PIL', 'websockets', 'asyncio')

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
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        application_name: str = 'facecheck'
    ) -> None:
        """Replace the root handlers.

        With file logging on, ``<application_name>.log`` receives everything
        at ``log_level`` and ``<application_name>-errors.log`` only errors.
        Both rotate at ``max_file_size`` bytes.
        """
        if self._configured:
            return

        level = getattr(logging, log_level.upper(), logging.INFO)
        formatter = StructuredFormatter() if structured_logging else HumanReadableFormatter()
        correlation_filter = CorrelationIDFilter()

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()

        def attach(name: str, handler: logging.Handler, handler_level: int) -> None:
            handler.setLevel(handler_level)
            handler.setFormatter(formatter)
            handler.addFilter(correlation_filter)
            root.addHandler(handler)
            self._handlers[name] = handler

        if enable_console_logging:
            attach('console', logging.StreamHandler(sys.stdout), level)

        if enable_file_logging:
            directory = Path(log_dir or 'logs')
            directory.mkdir(parents=True, exist_ok=True)
            for name, suffix, handler_level in (
                ('application', '', level),
                ('errors', '-errors', logging.ERROR),
            ):
                attach(name, logging.handlers.RotatingFileHandler(
                    directory / f'{application_name}{suffix}.log',
                    maxBytes=max_file_size,
                    backupCount=backup_count,
                    encoding='utf-8',
                ), handler_level)

        for name in self.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        self._configured = True
        logging.getLogger(__name__).info(
            f"Logging configured: level={log_level} file={enable_file_logging} "
            f"console={enable_console_logging} structured={structured_logging}"
        )

    def shutdown(self) -> None:
        """Detach and close the handlers installed by ``configure``."""
        root = logging.getLogger()
        for handler in self._handlers.values():
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        self._configured = False


logging_manager = LoggingManager()


def configure_logging(**kwargs) -> None:
    logging_manager.configure(**kwargs)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


class CorrelationContext:
    """Sets the correlation id for the enclosed block, generating one if not given."""

    def __init__(self, corr_id: Optional[str] = None):
        self.corr_id = corr_id or uuid.uuid4().hex[:12]
        self._token = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.corr_id)
        return self.corr_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _correlation_id.reset(self._token)
