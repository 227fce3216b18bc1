"""Webcam service for camera capture.

Each ``capture()`` grabs one frame, applies the configured rotation and
writes it as JPEG into the cache directory, because the image pipeline
works from encoded files rather than raw arrays.
"""
from __future__ import annotations

import asyncio
import platform
import subprocess
import threading
import cv2
import numpy as np
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.base_service import BaseService
from ..core.entities import Frame
from ..core.exceptions import CaptureError, ValidationError
from ..core.performance import performance_timer
from ..utils.image_utils import encode_image
from ..utils.file_utils import write_bytes

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class WebcamService(BaseService):
    """Camera capture service backed by ``cv2.VideoCapture``."""

    FRAME_FILENAME = "capture_frame.jpg"

    def __init__(self, config=None, camera_index: Optional[int] = None,
                 width: Optional[int] = None, height: Optional[int] = None,
                 fps: Optional[int] = None, rotation: Optional[int] = None,
                 output_dir: Optional[str] = None):
        """Initialize webcam service.

        Explicit arguments override the matching ``config`` values.

        Args:
            config: Application configuration
            camera_index: Camera device index
            width: Requested frame width
            height: Requested frame height
            fps: Requested frames per second
            rotation: Clockwise rotation applied to captured frames (0/90/180/270)
            output_dir: Directory captured frames are written to
        """
        super().__init__(config=config, service_name="WebcamService")

        def pick(value, key, default):
            if value is not None:
                return value
            return config.get(key, default) if config is not None else default

        self.camera_index = pick(camera_index, "camera_index", 0)
        self.width = pick(width, "camera_width", 1280)
        self.height = pick(height, "camera_height", 720)
        self.target_fps = pick(fps, "camera_fps", 30)
        self.rotation = int(pick(rotation, "capture_rotation", 0)) % 360
        self.output_dir = Path(pick(output_dir, "cache_dir", "data/cache"))

        if self.rotation not in (0, 90, 180, 270):
            raise ValidationError(f"Rotation must be 0, 90, 180 or 270, got {self.rotation}")

        self._capture: Optional[cv2.VideoCapture] = None
        self._capture_lock = threading.Lock()
        self._backend_name: Optional[str] = None
        self._frames_captured = 0
        self._failed_reads = 0

        # Available backends in order of preference
        self._backends = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_V4L2, cv2.CAP_ANY]

    def _initialize(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.open()

    def _shutdown(self) -> None:
        self.close()

    def _health_check(self) -> bool:
        return super()._health_check() and self.is_opened

    def _get_health_details(self) -> Dict[str, Any]:
        details = super()._get_health_details()
        details.update({
            'camera_index': self.camera_index,
            'opened': self.is_opened,
            'backend': self._backend_name,
            'frames_captured': self._frames_captured,
            'failed_reads': self._failed_reads,
        })
        return details

    @property
    def is_opened(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    @property
    def frame_path(self) -> Path:
        return self.output_dir / self.FRAME_FILENAME

    @performance_timer("camera.open")
    def open(self) -> None:
        """Open the camera, trying each backend in turn.

        Raises:
            CaptureError: If no backend can open the device
        """
        if self.is_opened:
            return

        self.logger.info(f"Opening camera {self.camera_index}")

        with self._capture_lock:
            for backend in self._backends:
                try:
                    capture = cv2.VideoCapture(self.camera_index, backend)
                except cv2.error as e:
                    self.logger.debug(f"Backend {backend} failed: {e}")
                    continue
                if capture.isOpened():
                    self._capture = capture
                    break
                capture.release()

            if self._capture is None:
                raise CaptureError(f"Failed to open camera {self.camera_index}")

            self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._capture.set(cv2.CAP_PROP_FPS, self.target_fps)
            self._capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Minimize buffering lag

            try:
                self._backend_name = self._capture.getBackendName()
            except cv2.error:
                self._backend_name = "unknown"

        actual_width, actual_height = self.get_resolution()
        self.logger.info(f"Camera opened: {actual_width}x{actual_height} via {self._backend_name}")

    def close(self) -> None:
        """Release the camera."""
        with self._capture_lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                self.logger.info("Camera released")

    def get_resolution(self) -> Tuple[int, int]:
        """Current camera resolution as (width, height), (0, 0) when closed."""
        if self.is_opened:
            width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
            return width, height
        return 0, 0

    def read_frame(self) -> np.ndarray:
        """Grab one frame and apply the configured rotation.

        Raises:
            CaptureError: If the camera is closed or the read fails
        """
        with self._capture_lock:
            if self._capture is None or not self._capture.isOpened():
                raise CaptureError("Camera is not open")
            ret, frame = self._capture.read()

        if not ret or frame is None:
            self._failed_reads += 1
            raise CaptureError(f"Failed to read frame from camera {self.camera_index}")

        if self.rotation:
            frame = cv2.rotate(frame, _ROTATIONS[self.rotation])
        return frame

    def _capture_to_file(self) -> Frame:
        frame = self.read_frame()
        try:
            data = encode_image(frame, "JPEG", 95)
        except (ValueError, cv2.error) as e:
            raise CaptureError(f"Failed to encode captured frame: {e}") from e

        path = self.frame_path
        write_bytes(path, data)

        h, w = frame.shape[:2]
        self._frames_captured += 1
        return Frame(path=str(path), width=w, height=h)

    async def capture(self) -> Frame:
        """Capture one frame to disk.

        Raises:
            CaptureError: If the camera cannot deliver a frame
        """
        with self.operation_context("capture"):
            try:
                return await asyncio.to_thread(self._capture_to_file)
            except OSError as e:
                raise CaptureError(f"Failed to write captured frame: {e}") from e

    @staticmethod
    def list_available_cameras(max_cameras: int = 10) -> List[Dict[str, Any]]:
        """Probe device indices and report the ones that open.

        Returns:
            List of dicts with ``index``, ``name``, ``width`` and ``height``
        """
        cameras = []
        for index in range(max_cameras):
            cap = None
            try:
                cap = cv2.VideoCapture(index)
                if cap.isOpened():
                    cameras.append({
                        'index': index,
                        'name': _camera_name(index),
                        'width': int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                        'height': int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                    })
            except cv2.error:
                pass
            finally:
                if cap is not None:
                    cap.release()
        return cameras

    def __enter__(self) -> 'WebcamService':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def _camera_name(camera_index: int) -> str:
    """Best-effort human readable device name."""
    if platform.system() == "Linux":
        try:
            result = subprocess.run(
                ['v4l2-ctl', '-d', f"/dev/video{camera_index}", '--info'],
                capture_output=True,
                text=True,
                timeout=5
            )
            if result.returncode == 0:
                for line in result.stdout.split('\n'):
                    if 'Card type' in line:
                        return line.split(':', 1)[1].strip()
        except (OSError, subprocess.SubprocessError):
            # v4l2-ctl not installed
            pass
    return f"Camera {camera_index}"
