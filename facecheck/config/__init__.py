"""Configuration: defaults, config.json and environment overrides."""

from .defaults import DEFAULT_CONFIG
from .env_config import EnvironmentConfig, load_environment_config
from .settings import Config, load_config, save_config

__all__ = [
    "Config", "load_config", "save_config", "DEFAULT_CONFIG",
    "EnvironmentConfig", "load_environment_config",
]
