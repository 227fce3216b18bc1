"""Utility functions package."""

from .geometry import (
    fit_to_viewport, to_display_rect, select_largest_face, is_face_large_enough,
    padded_crop_region, mirror_box, ensure_dirs
)
from .image_utils import (
    decode_image, encode_image, flip_image, crop_image_region,
    compress_image, smart_compress, exif_transpose_file, resize_image
)
from .file_utils import LocalFileStorage

__all__ = [
    "fit_to_viewport", "to_display_rect", "select_largest_face", "is_face_large_enough",
    "padded_crop_region", "mirror_box", "ensure_dirs",
    "decode_image", "encode_image", "flip_image", "crop_image_region",
    "compress_image", "smart_compress", "exif_transpose_file", "resize_image",
    "LocalFileStorage",
]
