"""Services package: capture, detection, processing and recognition."""

from .webcam_service import WebcamService
from .face_detector import FaceDetectionService
from .image_operations import OpenCVImageOperations
from .crop_history import CropHistoryStore, PreviewSweeper
from .recognition_state import RecognitionStateMachine
from .recognition_protocol import build_check_image_message, classify_identity, parse_response
from .network_session import RecognitionSession
from .image_pipeline import ImageProcessingPipeline
from .notification_service import NotificationService
from .scheduler import DetectionScheduler

__all__ = [
    "WebcamService", "FaceDetectionService", "OpenCVImageOperations",
    "CropHistoryStore", "PreviewSweeper", "RecognitionStateMachine",
    "build_check_image_message", "classify_identity", "parse_response",
    "RecognitionSession", "ImageProcessingPipeline", "NotificationService",
    "DetectionScheduler"
]
