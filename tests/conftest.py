"""Pytest configuration and shared fixtures for facecheck.

Provides temporary directories, a real ``Config`` pointed at them, sample
images, and in-memory fakes for the camera, detector, WebSocket connection,
timers and sound output so services can be exercised without hardware or
a recognition server.
"""
import asyncio
import os
import sys
import tempfile
import logging
from pathlib import Path
from typing import Callable, List, Optional

import cv2
import numpy as np
import pytest
from websockets.exceptions import ConnectionClosedOK

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from facecheck.config.settings import Config
from facecheck.core.entities import FaceBox, Frame, SoundEvent
from facecheck.core.exceptions import CaptureError, DetectionError
from facecheck.core.performance import PerformanceMonitor


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logging.getLogger('PIL').setLevel(logging.WARNING)
logging.getLogger('websockets').setLevel(logging.WARNING)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Provide a real configuration object using temporary directories."""
    return Config(
        cache_dir=str(temp_dir / "cache"),
        log_dir=str(temp_dir / "logs"),
        enable_file_logging=False,
        sound_enabled=False,
        viewport_width=640,
        viewport_height=480,
    )


def make_test_image(width: int = 640, height: int = 480) -> np.ndarray:
    """Gradient image with a bright block so crops are distinguishable."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    for i in range(height):
        image[i, :, :] = int(255 * i / height)
    cv2.rectangle(image, (width // 4, height // 4), (width // 2, height // 2), (0, 0, 255), -1)
    return image


def image_dimensions(data: bytes):
    """(width, height) of encoded image bytes."""
    h, w = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR).shape[:2]
    return w, h


@pytest.fixture
def sample_image():
    """Provide a 640x480 BGR test image."""
    return make_test_image()


@pytest.fixture
def sample_jpeg(sample_image):
    """Provide the sample image encoded as JPEG bytes."""
    ok, encoded = cv2.imencode(".jpg", sample_image)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def frame_file(temp_dir, sample_jpeg):
    """Provide a captured frame written to disk."""
    path = temp_dir / "frame.jpg"
    path.write_bytes(sample_jpeg)
    return Frame(path=str(path), width=640, height=480)


@pytest.fixture(autouse=True)
def reset_performance_monitor():
    """Start every test with an empty timing registry."""
    PerformanceMonitor.instance().reset()
    yield


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTimerHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """``call_later`` replacement driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: List[FakeTimerHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.clock() + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> List[FakeTimerHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        """Advance the clock and fire every timer that became due."""
        self.clock.advance(seconds)
        for handle in list(self.handles):
            if not handle.cancelled and handle.due <= self.clock():
                self.handles.remove(handle)
                handle.callback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


class FakeCamera:
    """Camera that returns a fixed frame file."""

    def __init__(self, frame: Frame):
        self.frame = frame
        self.error: Optional[Exception] = None
        self.captures = 0
        self.initialized = False

    def initialize(self) -> None:
        self.initialized = True

    def shutdown(self) -> None:
        self.initialized = False

    async def capture(self) -> Frame:
        self.captures += 1
        if self.error is not None:
            raise self.error
        return self.frame


class FakeDetector:
    """Detector returning preset boxes."""

    def __init__(self, boxes: Optional[List[FaceBox]] = None):
        self.boxes = list(boxes or [])
        self.error: Optional[Exception] = None
        self.calls = 0

    def initialize(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    async def detect(self, frame: Frame) -> List[FaceBox]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.boxes)


_CLOSE = object()


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: List[str] = []
        self.send_error: Optional[Exception] = None
        self.closed = False
        self._queue: Optional[asyncio.Queue] = None

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    async def send(self, message: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def recv(self):
        item = await self.queue.get()
        if item is _CLOSE:
            raise ConnectionClosedOK(None, None)
        return item

    def push(self, message) -> None:
        self.queue.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self.queue.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(_CLOSE)


class FakeConnector:
    """``connector(url)`` handing out FakeConnections, optionally failing first."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.connections: List[FakeConnection] = []

    async def __call__(self, url: str) -> FakeConnection:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionRefusedError(f"refused {url}")
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]


class RecordingNotifier:
    """Notifier that records played events."""

    def __init__(self):
        self.events: List[SoundEvent] = []

    def play(self, event: SoundEvent) -> None:
        self.events.append(event)


@pytest.fixture
def fake_camera(frame_file):
    return FakeCamera(frame_file)


@pytest.fixture
def fake_detector():
    return FakeDetector([FaceBox(200, 120, 180, 200)])


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def notifier():
    return RecordingNotifier()


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def pytest_configure(config):
    """Register the suite markers used by run_tests.py."""
    for marker, description in (
        ("unit", "fast tests of a single module"),
        ("integration", "scheduler, session and pipeline wired together against fakes"),
        ("webcam", "opens a real camera; set RUN_WEBCAM_TESTS=1"),
    ):
        config.addinivalue_line("markers", f"{marker}: {description}")


def pytest_collection_modifyitems(config, items):
    """Mark tests by directory and skip camera tests unless enabled."""
    camera_enabled = bool(os.getenv("RUN_WEBCAM_TESTS"))
    for item in items:
        suite = "integration" if "integration" in item.path.parts else "unit"
        item.add_marker(getattr(pytest.mark, suite))
        if item.get_closest_marker("webcam") and not camera_enabled:
            item.add_marker(pytest.mark.skip(reason="set RUN_WEBCAM_TESTS=1 to use the camera"))
