"""Custom exceptions for the application."""
from __future__ import annotations

from typing import Any, Optional


class ApplicationError(Exception):
    """Base application error."""
    pass

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ValidationError(ApplicationError):
    """Data validation errors."""
    pass

class ServiceError(ApplicationError):
    """Service operation errors."""
    pass

class CaptureError(ServiceError):
    """Camera access or frame capture errors."""
    pass

class DetectionError(ServiceError):
    """Face detector errors."""
    pass


class ImageOperationError(ApplicationError):
    """Native image operator failure.

    Attributes:
        code: Short machine-readable failure code (DECODE_ERROR, CROP_ERROR, ...)
    """

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class PipelineError(ApplicationError):
    """A required image pipeline stage failed and the cycle was aborted.

    Attributes:
        stage: Name of the failing stage
        timings: StageTimings recorded up to the failure
        preview: Failed CropPreview registered for the cycle, if any
        code: ImageOperationError code behind the failure, if any
    """

    def __init__(self, stage: str, message: str, timings: Any = None, preview: Any = None,
                 code: Optional[str] = None):
        super().__init__(f"Pipeline stage '{stage}' failed: {message}")
        self.stage = stage
        self.code = code
        self.timings = timings
        self.preview = preview

class NetworkError(ServiceError):
    """Recognition endpoint communication errors."""
    pass

class SessionNotConnectedError(NetworkError):
    """Send attempted while the socket is not open."""
    pass

class RequestPendingError(NetworkError):
    """Send attempted while another request is still outstanding."""
    pass


class MalformedResponseError(NetworkError):
    """Inbound message could not be parsed into a recognition result."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class StateTransitionError(ApplicationError):
    """Illegal recognition state transition."""
    pass
