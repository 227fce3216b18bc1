"""Domain entities (data-only structures) used across services."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Any


class CropStatus(str, Enum):
    WAITING = "waiting"
    RECOGNIZED = "recognized"
    NOT_RECOGNIZED = "not_recognized"


class RecognitionState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    WAITING_FOR_RESPONSE = "waiting_for_response"
    SHOWING_RESULT = "showing_result"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class SoundEvent(str, Enum):
    RECOGNIZED = "recognized"
    NOT_RECOGNIZED = "not_recognized"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Frame:
    path: str
    width: int
    height: int

@dataclass(slots=True, frozen=True)
class FaceBox:
    left: float
    top: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

@dataclass(slots=True, frozen=True)
class DisplayRect:
    left: float
    top: float
    width: float
    height: float

@dataclass(slots=True, frozen=True)
class DisplayFit:
    width: float
    height: float
    offset_x: float
    offset_y: float


@dataclass(slots=True, frozen=True)
class CropPreview:
    id: str
    image_path: Optional[str]
    created_at: float  # epoch seconds
    status: CropStatus = CropStatus.WAITING
    person_name: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status is not CropStatus.WAITING

@dataclass(slots=True, frozen=True)
class PendingRequest:
    sent_at: float  # monotonic seconds
    crop_preview_id: str

@dataclass(slots=True, frozen=True)
class RecognitionOutcome:
    request_id: str
    status: CropStatus
    person_name: Optional[str]
    latency_ms: float
    error_message: Optional[str] = None
    raw: Optional[dict] = None


@dataclass(slots=True, frozen=True)
class StageTimings:
    """Per-stage wall-clock durations of one pipeline run, in milliseconds."""
    read_ms: float = 0.0
    flip_ms: float = 0.0
    crop_ms: float = 0.0
    compress_ms: float = 0.0
    persist_ms: float = 0.0
    total_ms: float = 0.0

    def as_dict(self) -> dict:
        return {
            "read": self.read_ms,
            "flip": self.flip_ms,
            "crop": self.crop_ms,
            "compress": self.compress_ms,
            "persist": self.persist_ms,
            "total": self.total_ms,
        }

@dataclass(slots=True, frozen=True)
class CompressionResult:
    data: bytes
    original_size: int
    compressed_size: int
    compression_ratio: float
    width: int
    height: int
    processing_ms: float = 0.0

@dataclass(slots=True, frozen=True)
class PipelineResult:
    preview: CropPreview
    payload: str  # base64 transmission payload
    timings: StageTimings
    compression: Optional[CompressionResult] = None

@dataclass(slots=True, frozen=True)
class OverlayState:
    """Everything a display layer needs to redraw the bounding-box overlay."""
    frame: Frame
    fit: DisplayFit
    rects: Tuple[DisplayRect, ...]
    face_count: int
    recognition_state: RecognitionState
    largest_rect: Optional[DisplayRect] = None

@dataclass(slots=True, frozen=True)
class FileEntry:
    name: str
    mtime: float  # epoch seconds
    path: Any = None
