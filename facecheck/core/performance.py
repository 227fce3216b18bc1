"""Timing registry for camera, pipeline, network and scheduler operations.

Durations are recorded in seconds under dotted names such as
``pipeline.crop`` or ``network.round_trip`` and summarized at shutdown.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import Callable, Dict, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    """Process-level metrics snapshot."""
    cpu_percent: float = 0.0
    memory_usage_mb: float = 0.0
    memory_percent: float = 0.0
    active_threads: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


class PerformanceMonitor:
    """Process-wide store of the most recent durations per operation."""

    _instance: Optional['PerformanceMonitor'] = None
    _instance_lock = threading.Lock()

    def __init__(self, max_samples: int = 500):
        if PerformanceMonitor._instance is not None:
            raise RuntimeError("Use PerformanceMonitor.instance() to get singleton")
        self._samples: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_samples))
        self._lock = threading.Lock()

    @classmethod
    def instance(cls) -> 'PerformanceMonitor':
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def record_operation_time(self, operation: str, duration: float) -> None:
        with self._lock:
            self._samples[operation].append(duration)

    def get_operation_stats(self, operation: str) -> Dict[str, float]:
        """count/min/max/avg/p95/last/total in seconds, or {} if never recorded."""
        with self._lock:
            durations = list(self._samples.get(operation, ()))
        if not durations:
            return {}

        ordered = sorted(durations)
        total = sum(durations)
        return {
            'count': len(durations),
            'min': ordered[0],
            'max': ordered[-1],
            'avg': total / len(durations),
            'p95': ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))],
            'last': durations[-1],
            'total': total,
        }

    def get_all_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            names = list(self._samples)
        return {name: self.get_operation_stats(name) for name in names}

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()


class PerformanceTimer:
    """Records the duration of the enclosed block under ``operation_name``."""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> 'PerformanceTimer':
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()
        PerformanceMonitor.instance().record_operation_time(self.operation_name, self.duration)

    @property
    def duration(self) -> float:
        if self._start is None or self._end is None:
            return 0.0
        return self._end - self._start


def performance_timer(operation_name: Optional[str] = None):
    """Decorator form of ``PerformanceTimer`` for synchronous functions."""
    def decorator(func: Callable) -> Callable:
        name = operation_name or f"{func.__module__}.{func.__qualname__}"

        @wraps(func)
        def wrapper(*args, **kwargs):
            with PerformanceTimer(name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def get_system_metrics() -> PerformanceMetrics:
    """Sample CPU and memory usage of this process."""
    try:
        process = psutil.Process()
        with process.oneshot():
            return PerformanceMetrics(
                cpu_percent=process.cpu_percent(),
                memory_usage_mb=process.memory_info().rss / (1024 * 1024),
                memory_percent=process.memory_percent(),
                active_threads=threading.active_count(),
            )
    except psutil.Error as e:
        logger.warning(f"Failed to sample process metrics: {e}")
        return PerformanceMetrics(active_threads=threading.active_count())
