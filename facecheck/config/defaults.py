"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Camera
    "camera_index": 0,
    "camera_width": 1280,
    "camera_height": 720,
    "camera_fps": 30,
    "capture_rotation": 0,  # 0, 90, 180 or 270 degrees
    "mirror_front_camera": True,

    # Viewport the captured frame is fitted into
    "viewport_width": 1280,
    "viewport_height": 720,

    # Detection loop
    "detection_interval_ms": 50,
    "bounding_box_padding": 20,  # source-image pixels
    "min_face_display_size": 120,  # viewport pixels
    "detector_scale_factor": 1.1,
    "detector_min_neighbors": 5,
    "detector_min_face_fraction": 0.1,  # of the shorter image side

    # Crop / compression
    "crop_margin": 20,
    "output_format": "JPEG",  # JPEG, PNG, WEBP
    "image_quality": 95,
    "compress_enabled": True,
    "transmit_max_width": 480,
    "transmit_max_height": 480,
    "transmit_quality": 85,
    "transmit_target_kb": 0,  # 0 disables the size cap on the transmitted copy
    "preview_max_width": 160,
    "preview_max_height": 160,
    "preview_quality": 70,

    # Preview storage
    "cache_dir": "data/cache",
    "preview_prefix": "face_preview_",
    "history_capacity": 10,
    "preview_retention_seconds": 3600,
    "sweep_interval_seconds": 1800,

    # Recognition endpoint
    "recognition_url": "ws://localhost:8765",
    "message_marker": "client",
    "message_terminator": "end",
    "unknown_identities": ["Unknown", "Unknown_done"],
    "reconnect_interval_ms": 1000,
    "max_reconnect_interval_ms": 30000,
    "reconnect_decay": 1.5,
    "connect_timeout_ms": 2000,
    "max_reconnect_attempts": None,  # None retries forever

    # Recognition state machine
    "cooldown_ms": 2000,
    "dwell_recognized_ms": 1500,
    "dwell_not_recognized_ms": 500,

    # Feedback
    "sound_enabled": True,

    # Debug and Logging Settings
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
    "enable_file_logging": True,
    "structured_logging": False,
}
