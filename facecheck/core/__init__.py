"""Core domain entities, errors and cross-cutting infrastructure."""

from .entities import (
    Frame, FaceBox, DisplayRect, DisplayFit, CropPreview, CropStatus,
    RecognitionState, PendingRequest, RecognitionOutcome, StageTimings,
    ConnectionState, SoundEvent,
)
from .exceptions import (
    ApplicationError, CaptureError, DetectionError, ImageOperationError,
    PipelineError, NetworkError, StateTransitionError,
)

__all__ = [
    "Frame", "FaceBox", "DisplayRect", "DisplayFit", "CropPreview", "CropStatus",
    "RecognitionState", "PendingRequest", "RecognitionOutcome", "StageTimings",
    "ConnectionState", "SoundEvent",
    "ApplicationError", "CaptureError", "DetectionError", "ImageOperationError",
    "PipelineError", "NetworkError", "StateTransitionError",
]
