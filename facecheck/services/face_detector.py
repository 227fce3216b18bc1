"""Face detection service using OpenCV's bundled Haar cascade."""
from __future__ import annotations

import asyncio
import cv2
import numpy as np
from typing import Any, Dict, List, Optional

from ..core.base_service import BaseService
from ..core.entities import FaceBox, Frame
from ..core.exceptions import DetectionError
from ..core.performance import PerformanceTimer
from ..utils.image_utils import read_image_file, to_grayscale

CASCADE_FILE = "haarcascade_frontalface_default.xml"


class FaceDetectionService(BaseService):
    """Detects frontal faces in captured frames.

    Returns boxes in source-image pixels. An empty list is a valid result.
    """

    def __init__(self, config=None, scale_factor: Optional[float] = None,
                 min_neighbors: Optional[int] = None,
                 min_face_fraction: Optional[float] = None,
                 cascade_path: Optional[str] = None):
        super().__init__(config=config, service_name="FaceDetectionService")

        def pick(value, key, default):
            if value is not None:
                return value
            return config.get(key, default) if config is not None else default

        self.scale_factor = float(pick(scale_factor, "detector_scale_factor", 1.1))
        self.min_neighbors = int(pick(min_neighbors, "detector_min_neighbors", 5))
        self.min_face_fraction = float(pick(min_face_fraction, "detector_min_face_fraction", 0.1))
        self.cascade_path = cascade_path or (cv2.data.haarcascades + CASCADE_FILE)

        self._cascade: Optional[cv2.CascadeClassifier] = None
        self._faces_detected = 0

    def _initialize(self) -> None:
        cascade = cv2.CascadeClassifier(self.cascade_path)
        if cascade.empty():
            raise DetectionError(f"Could not load face cascade from {self.cascade_path}")
        self._cascade = cascade
        self.logger.info(f"Loaded face cascade {self.cascade_path}")

    def _shutdown(self) -> None:
        self._cascade = None

    def _get_health_details(self) -> Dict[str, Any]:
        details = super()._get_health_details()
        details.update({
            'cascade_loaded': self._cascade is not None,
            'faces_detected': self._faces_detected,
        })
        return details

    def min_face_size(self, width: int, height: int) -> int:
        """Smallest face side passed to the cascade, in pixels."""
        return max(1, int(min(width, height) * self.min_face_fraction))

    def detect_array(self, image: np.ndarray) -> List[FaceBox]:
        """Run the cascade on a BGR array.

        Raises:
            DetectionError: If the detector is not initialized or OpenCV fails
        """
        if self._cascade is None:
            raise DetectionError("Face detector is not initialized")

        h, w = image.shape[:2]
        min_side = self.min_face_size(w, h)
        try:
            gray = to_grayscale(image)
            faces = self._cascade.detectMultiScale(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=(min_side, min_side),
            )
        except cv2.error as e:
            raise DetectionError(f"Face detection failed: {e}") from e

        boxes = [FaceBox(float(x), float(y), float(fw), float(fh)) for (x, y, fw, fh) in faces]
        self._faces_detected += len(boxes)
        return boxes

    def _detect_file(self, path: str) -> List[FaceBox]:
        try:
            image = read_image_file(path)
        except OSError as e:
            raise DetectionError(f"Could not read frame {path}: {e}") from e
        if image is None:
            raise DetectionError(f"Could not decode frame {path}")
        return self.detect_array(image)

    async def detect(self, frame: Frame) -> List[FaceBox]:
        """Detect faces in a captured frame.

        Raises:
            DetectionError: On read or detector failure
        """
        with self.operation_context("detect"), PerformanceTimer("detector.detect"):
            return await asyncio.to_thread(self._detect_file, frame.path)
