"""Common lifecycle, health and operation bookkeeping for services.

Everything runs on one asyncio event loop. ``initialize``/``shutdown`` are
synchronous; services that own a background task add ``async start()`` and
``async stop()`` on top and report it through ``_set_running``.
"""
from __future__ import annotations

import abc
import logging
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .exceptions import ServiceError


@dataclass
class ServiceHealth:
    """Snapshot produced by ``BaseService.get_health_status``."""
    is_healthy: bool
    status_message: str
    last_check: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)


class BaseService(abc.ABC):
    """Base class for the camera, detector, session and scheduler services.

    Subclasses implement ``_initialize`` and ``_shutdown``. Failures inside
    ``operation_context`` blocks are counted per exception type and re-raised.
    """

    def __init__(self, config=None, service_name: Optional[str] = None):
        self._service_name = service_name or type(self).__name__
        self._config = config
        self._logger = logging.getLogger(f"{type(self).__module__}.{self._service_name}")

        self._is_initialized = False
        self._is_running = False
        self._started_at: Optional[float] = None
        self._last_error: Optional[Exception] = None
        self._status_message = "Not initialized"

        self._operations: Counter = Counter()
        self._failures: Counter = Counter()
        self._succeeded = 0

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def config(self):
        return self._config

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    def initialize(self) -> None:
        """Acquire the service's resources. Calling it twice is a no-op.

        Raises:
            ServiceError: If ``_initialize`` fails
        """
        if self._is_initialized:
            return

        self._logger.info(f"Initializing {self._service_name}")
        try:
            self._initialize()
        except Exception as e:
            self._last_error = e
            self._status_message = f"Initialization failed: {e}"
            self._logger.error(f"Failed to initialize {self._service_name}: {e}")
            raise ServiceError(f"Failed to initialize {self._service_name}: {e}") from e

        self._is_initialized = True
        self._started_at = time.time()
        self._status_message = "Initialized"

    def shutdown(self) -> None:
        """Release resources. Errors are logged so the remaining services still shut down."""
        if not self._is_initialized:
            return

        self._logger.info(f"Shutting down {self._service_name}")
        try:
            self._shutdown()
        except Exception as e:
            self._last_error = e
            self._logger.error(f"Error shutting down {self._service_name}: {e}")

        self._is_initialized = False
        self._is_running = False
        self._status_message = "Shut down"

    @contextmanager
    def operation_context(self, operation_name: str):
        """Count ``operation_name`` and record the exception type if it fails."""
        self._operations[operation_name] += 1
        try:
            yield
        except Exception as e:
            self._failures[type(e).__name__] += 1
            self._last_error = e
            raise
        self._succeeded += 1

    def _set_running(self, running: bool) -> None:
        self._is_running = running
        self._status_message = "Running" if running else "Stopped"

    def get_health_status(self) -> ServiceHealth:
        try:
            healthy = self._health_check()
            details = self._get_health_details()
        except Exception as e:
            return ServiceHealth(False, f"Health check failed: {e}", details={'error': str(e)})
        return ServiceHealth(healthy, self._status_message, details=details)

    def get_metrics(self) -> Dict[str, Any]:
        """Operation counters since initialization."""
        total = sum(self._operations.values())
        return {
            'service_name': self._service_name,
            'uptime_seconds': time.time() - self._started_at if self._started_at else 0.0,
            'operations': dict(self._operations),
            'failures': dict(self._failures),
            'total_operations': total,
            'success_rate': self._succeeded / total if total else 0.0,
            'last_error': str(self._last_error) if self._last_error else None,
        }

    @abc.abstractmethod
    def _initialize(self) -> None:
        """Acquire service-specific resources."""

    @abc.abstractmethod
    def _shutdown(self) -> None:
        """Release service-specific resources."""

    def _health_check(self) -> bool:
        return self._is_initialized

    def _get_health_details(self) -> Dict[str, Any]:
        return {
            'initialized': self._is_initialized,
            'running': self._is_running,
            'total_operations': sum(self._operations.values()),
            'error_count': sum(self._failures.values()),
        }
