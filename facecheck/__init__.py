"""
Real-time face capture and remote recognition client.
"""

__version__ = "1.0.0"
__author__ = "facecheck developers"

from .config.settings import Config, load_config, save_config
from .core.entities import CropPreview, CropStatus, FaceBox, RecognitionState

__all__ = [
    "Config", "load_config", "save_config",
    "CropPreview", "CropStatus", "FaceBox", "RecognitionState"
]
