"""Environment variable overrides.

Values from a ``.env`` file take precedence over the process environment,
and both override ``config.json``. Only the settings that differ between
deployments are exposed here:

    FACECHECK_RECOGNITION_URL   ws:// or wss:// endpoint
    FACECHECK_CACHE_DIR         preview and frame directory
    FACECHECK_CAMERA_INDEX      0-63
    FACECHECK_LOG_LEVEL         DEBUG .. CRITICAL
    DEBUG_LOGGING               true/1/yes/on
"""
import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
MAX_CAMERA_INDEX = 63

_UNSAFE_PATH_CHARS = ('..', '$', '`', ';', '|', '&', '<', '>', '"', "'")
_TRUTHY = ('true', '1', 'yes', 'on')


class EnvironmentConfigError(ValueError):
    """An environment variable holds a value that cannot be used."""


@dataclass(frozen=True)
class EnvironmentConfig:
    """Overrides found in the environment; ``None`` means not set."""

    recognition_url: Optional[str] = None
    cache_dir: Optional[str] = None
    camera_index: Optional[int] = None
    log_level: Optional[str] = None
    debug_logging: bool = False


def parse_url(raw: str) -> str:
    url = raw.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ('ws', 'wss') or not parsed.netloc:
        raise EnvironmentConfigError(f"Recognition endpoint must be a ws:// or wss:// URL, got {raw!r}")
    return url


def parse_path(raw: str) -> str:
    path = raw.strip()
    if not path:
        raise EnvironmentConfigError("Directory path is empty")
    unsafe = [chars for chars in _UNSAFE_PATH_CHARS if chars in path]
    if unsafe:
        raise EnvironmentConfigError(f"Directory path {raw!r} contains {unsafe[0]!r}")
    return os.path.normpath(path)


def parse_camera_index(raw: str) -> int:
    try:
        index = int(raw.strip())
    except ValueError:
        raise EnvironmentConfigError(f"Camera index is not an integer: {raw!r}") from None
    if not 0 <= index <= MAX_CAMERA_INDEX:
        raise EnvironmentConfigError(f"Camera index {index} outside 0..{MAX_CAMERA_INDEX}")
    return index


def parse_log_level(raw: str) -> str:
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        raise EnvironmentConfigError(f"Unknown log level {raw!r}")
    return level


def parse_flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


# (variable, EnvironmentConfig field, parser)
OVERRIDES: Tuple[Tuple[str, str, Callable[[str], object]], ...] = (
    ('FACECHECK_RECOGNITION_URL', 'recognition_url', parse_url),
    ('FACECHECK_CACHE_DIR', 'cache_dir', parse_path),
    ('FACECHECK_CAMERA_INDEX', 'camera_index', parse_camera_index),
    ('FACECHECK_LOG_LEVEL', 'log_level', parse_log_level),
    ('DEBUG_LOGGING', 'debug_logging', parse_flag),
)


def read_env_file(path: Optional[str] = None) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines from a dotenv file (``.env`` by default).

    Blank lines and ``#`` comments are skipped and matching outer quotes are
    stripped. A missing file yields an empty mapping.
    """
    env_path = Path(path or '.env')
    if not env_path.is_file():
        logger.debug(f"No environment file at {env_path}")
        return {}

    values: Dict[str, str] = {}
    try:
        lines = env_path.read_text(encoding='utf-8').splitlines()
    except OSError as e:
        logger.error(f"Cannot read environment file {env_path}: {e}")
        return values

    for number, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition('=')
        if not sep:
            logger.warning(f"Ignoring {env_path}:{number}, expected KEY=VALUE")
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        values[key.strip()] = value

    logger.info(f"Loaded {len(values)} variables from {env_path}")
    return values


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Collect overrides from the ``.env`` file and the process environment.

    Raises:
        EnvironmentConfigError: If any variable that is set fails to parse
    """
    file_values = read_env_file(env_file_path)
    found = {}
    for variable, field_name, parse in OVERRIDES:
        raw = file_values.get(variable, os.environ.get(variable))
        if raw:
            found[field_name] = parse(raw)
    return EnvironmentConfig(**found)


__all__ = [
    "EnvironmentConfig",
    "EnvironmentConfigError",
    "OVERRIDES",
    "load_environment_config",
    "read_env_file",
    "parse_url",
    "parse_path",
    "parse_camera_index",
    "parse_log_level",
    "parse_flag",
]
