"""Configuration dataclass and loading utilities.

Provides a strongly-typed configuration object that is injected into
services instead of relying on a global module-level dictionary.

Precedence (highest first): environment variables / ``.env``, ``config.json``,
``DEFAULT_CONFIG``. Out-of-range numeric values fall back to their defaults
with a warning rather than aborting start-up.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
import json, os, logging
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfig, EnvironmentConfigError


@dataclass(slots=True)
class Config:
    # Camera
    camera_index: int = DEFAULT_CONFIG["camera_index"]
    camera_width: int = DEFAULT_CONFIG["camera_width"]
    camera_height: int = DEFAULT_CONFIG["camera_height"]
    camera_fps: int = DEFAULT_CONFIG["camera_fps"]
    capture_rotation: int = DEFAULT_CONFIG["capture_rotation"]
    mirror_front_camera: bool = DEFAULT_CONFIG["mirror_front_camera"]
    viewport_width: int = DEFAULT_CONFIG["viewport_width"]
    viewport_height: int = DEFAULT_CONFIG["viewport_height"]

    # Detection loop
    detection_interval_ms: int = DEFAULT_CONFIG["detection_interval_ms"]
    bounding_box_padding: int = DEFAULT_CONFIG["bounding_box_padding"]
    min_face_display_size: int = DEFAULT_CONFIG["min_face_display_size"]
    detector_scale_factor: float = DEFAULT_CONFIG["detector_scale_factor"]
    detector_min_neighbors: int = DEFAULT_CONFIG["detector_min_neighbors"]
    detector_min_face_fraction: float = DEFAULT_CONFIG["detector_min_face_fraction"]

    # Crop / compression
    crop_margin: int = DEFAULT_CONFIG["crop_margin"]
    output_format: str = DEFAULT_CONFIG["output_format"]
    image_quality: int = DEFAULT_CONFIG["image_quality"]
    compress_enabled: bool = DEFAULT_CONFIG["compress_enabled"]
    transmit_max_width: int = DEFAULT_CONFIG["transmit_max_width"]
    transmit_max_height: int = DEFAULT_CONFIG["transmit_max_height"]
    transmit_quality: int = DEFAULT_CONFIG["transmit_quality"]
    transmit_target_kb: int = DEFAULT_CONFIG["transmit_target_kb"]
    preview_max_width: int = DEFAULT_CONFIG["preview_max_width"]
    preview_max_height: int = DEFAULT_CONFIG["preview_max_height"]
    preview_quality: int = DEFAULT_CONFIG["preview_quality"]

    # Preview storage
    cache_dir: str = DEFAULT_CONFIG["cache_dir"]
    preview_prefix: str = DEFAULT_CONFIG["preview_prefix"]
    history_capacity: int = DEFAULT_CONFIG["history_capacity"]
    preview_retention_seconds: int = DEFAULT_CONFIG["preview_retention_seconds"]
    sweep_interval_seconds: int = DEFAULT_CONFIG["sweep_interval_seconds"]

    # Recognition endpoint
    recognition_url: str = DEFAULT_CONFIG["recognition_url"]
    message_marker: str = DEFAULT_CONFIG["message_marker"]
    message_terminator: str = DEFAULT_CONFIG["message_terminator"]
    unknown_identities: List[str] = field(default_factory=lambda: list(DEFAULT_CONFIG["unknown_identities"]))
    reconnect_interval_ms: int = DEFAULT_CONFIG["reconnect_interval_ms"]
    max_reconnect_interval_ms: int = DEFAULT_CONFIG["max_reconnect_interval_ms"]
    reconnect_decay: float = DEFAULT_CONFIG["reconnect_decay"]
    connect_timeout_ms: int = DEFAULT_CONFIG["connect_timeout_ms"]
    max_reconnect_attempts: Optional[int] = DEFAULT_CONFIG["max_reconnect_attempts"]

    # Recognition state machine
    cooldown_ms: int = DEFAULT_CONFIG["cooldown_ms"]
    dwell_recognized_ms: int = DEFAULT_CONFIG["dwell_recognized_ms"]
    dwell_not_recognized_ms: int = DEFAULT_CONFIG["dwell_not_recognized_ms"]

    sound_enabled: bool = DEFAULT_CONFIG["sound_enabled"]

    # Debug and logging
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]
    enable_file_logging: bool = DEFAULT_CONFIG["enable_file_logging"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # merge extra keys at top-level for saving
        extra = d.pop("extra", {})
        d.update(extra)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        if key in Config.__annotations__ and key != "extra":
            return getattr(self, key)
        return self.extra.get(key, default)


_NUMERIC_RANGES: Dict[str, tuple] = {
    'camera_index': (0, 63),
    'camera_width': (160, 7680),
    'camera_height': (120, 4320),
    'camera_fps': (1, 120),
    'viewport_width': (1, 7680),
    'viewport_height': (1, 4320),
    'detection_interval_ms': (10, 5000),
    'bounding_box_padding': (0, 500),
    'min_face_display_size': (0, 4000),
    'detector_scale_factor': (1.01, 2.0),
    'detector_min_neighbors': (0, 50),
    'detector_min_face_fraction': (0.0, 1.0),
    'crop_margin': (0, 500),
    'image_quality': (1, 100),
    'transmit_max_width': (16, 4096),
    'transmit_max_height': (16, 4096),
    'transmit_quality': (1, 100),
    'transmit_target_kb': (0, 10240),
    'preview_max_width': (16, 4096),
    'preview_max_height': (16, 4096),
    'preview_quality': (1, 100),
    'history_capacity': (1, 1000),
    'preview_retention_seconds': (1, 7 * 24 * 3600),
    'sweep_interval_seconds': (1, 7 * 24 * 3600),
    'reconnect_interval_ms': (1, 600000),
    'max_reconnect_interval_ms': (1, 3600000),
    'reconnect_decay': (1.0, 10.0),
    'connect_timeout_ms': (1, 600000),
    'cooldown_ms': (0, 600000),
    'dwell_recognized_ms': (0, 600000),
    'dwell_not_recognized_ms': (0, 600000),
}

_VALID_ROTATIONS = (0, 90, 180, 270)
_VALID_FORMATS = ('JPEG', 'PNG', 'WEBP')


def _read_config_file(path: str) -> Dict[str, Any]:
    """Return the JSON object stored at ``path``; anything unusable yields ``{}``."""
    if not os.path.isfile(path):
        logging.info(f"No configuration file at '{path}', using defaults")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logging.error(f"Configuration file '{path}' is not valid JSON ({e}), using defaults")
        return {}
    except OSError as e:
        logging.error(f"Cannot read configuration file '{path}' ({e}), using defaults")
        return {}

    if not isinstance(data, dict):
        logging.error(f"Configuration file '{path}' must hold a JSON object, using defaults")
        return {}
    logging.info(f"Loaded configuration from '{path}'")
    return data


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Build a ``Config`` from defaults, ``path`` and the environment.

    Invalid environment values are reported and ignored as a group; keys the
    dataclass does not know are preserved in ``Config.extra``.
    """
    try:
        env_config: Optional[EnvironmentConfig] = load_environment_config(env_file)
    except EnvironmentConfigError as e:
        logging.warning(f"Ignoring environment overrides: {e}")
        env_config = None

    merged = {**DEFAULT_CONFIG, **_read_config_file(path)}
    if env_config is not None:
        merged = _apply_environment_overrides(merged, env_config)
    merged = _sanitize_config_values(merged)

    known = [name for name in Config.__annotations__ if name != "extra"]
    extra = {k: v for k, v in merged.items() if k not in Config.__annotations__}
    if extra:
        logging.info(f"Keeping unrecognized configuration keys: {sorted(extra)}")
    return Config(**{name: merged[name] for name in known}, extra=extra)


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Write ``cfg`` to ``path``.

    The JSON goes to ``<path>.backup`` first and replaces ``path`` only once
    fully written, so a failed save leaves the previous file intact.
    """
    staging = f"{path}.backup"
    try:
        with open(staging, "w", encoding="utf-8") as f:
            json.dump(cfg.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(staging, path)
    except OSError as e:
        logging.error(f"Could not save configuration to '{path}': {e}")
        if os.path.exists(staging):
            os.remove(staging)
        return
    logging.info(f"Configuration saved to '{path}'")


def _apply_environment_overrides(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> Dict[str, Any]:
    """Overlay the environment values that are set onto ``config_dict``."""
    for name in ("recognition_url", "cache_dir", "camera_index", "log_level"):
        value = getattr(env_config, name)
        if value is not None:
            config_dict[name] = value

    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"
    return config_dict


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace invalid values with their defaults."""
    sanitized = config_dict.copy()

    for key, (min_val, max_val) in _NUMERIC_RANGES.items():
        value = sanitized.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logging.warning(f"Value {key}={value!r} is not numeric, using default")
            sanitized[key] = DEFAULT_CONFIG.get(key)
        elif not (min_val <= value <= max_val):
            logging.warning(f"Value {key}={value} out of range [{min_val}, {max_val}], using default")
            sanitized[key] = DEFAULT_CONFIG.get(key)

    if sanitized.get("max_reconnect_interval_ms", 0) < sanitized.get("reconnect_interval_ms", 0):
        logging.warning("max_reconnect_interval_ms below reconnect_interval_ms, raising it to match")
        sanitized["max_reconnect_interval_ms"] = sanitized["reconnect_interval_ms"]

    attempts = sanitized.get("max_reconnect_attempts")
    if attempts is not None and (isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 0):
        logging.warning(f"Value max_reconnect_attempts={attempts!r} is invalid, retrying forever")
        sanitized["max_reconnect_attempts"] = None

    if sanitized.get("capture_rotation") not in _VALID_ROTATIONS:
        logging.warning(f"Value capture_rotation={sanitized.get('capture_rotation')!r} invalid, using default")
        sanitized["capture_rotation"] = DEFAULT_CONFIG["capture_rotation"]

    fmt = str(sanitized.get("output_format", "")).upper()
    if fmt == "JPG":
        fmt = "JPEG"
    if fmt not in _VALID_FORMATS:
        logging.warning(f"Unsupported output_format {sanitized.get('output_format')!r}, using default")
        fmt = DEFAULT_CONFIG["output_format"]
    sanitized["output_format"] = fmt

    identities = sanitized.get("unknown_identities")
    if not isinstance(identities, list) or not all(isinstance(i, str) for i in identities):
        logging.warning("unknown_identities must be a list of strings, using default")
        sanitized["unknown_identities"] = list(DEFAULT_CONFIG["unknown_identities"])

    for key in ("cache_dir", "log_dir", "preview_prefix", "message_marker", "message_terminator"):
        value = sanitized.get(key)
        if not isinstance(value, str) or not value.strip():
            logging.warning(f"Setting '{key}' is empty or not a string. Using default.")
            sanitized[key] = DEFAULT_CONFIG[key]

    return sanitized


__all__ = ["Config", "load_config", "save_config"]
