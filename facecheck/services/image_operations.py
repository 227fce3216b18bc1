"""Async image operators.

Wraps the synchronous helpers in ``facecheck.utils.image_utils`` so the
event loop is never blocked by decoding or encoding, and maps failures to
``ImageOperationError`` codes.
"""
from __future__ import annotations

import asyncio
import logging
import time
import cv2
from typing import Callable, TypeVar

from ..core.entities import CompressionResult
from ..core.exceptions import ImageOperationError
from ..utils import image_utils

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OpenCVImageOperations:
    """Image flip/crop/compress backed by OpenCV."""

    def __init__(self, default_quality: int = 95):
        self.default_quality = default_quality

    async def _run(self, code: str, func: Callable[..., T], *args) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except MemoryError as e:
            raise ImageOperationError("OOM_ERROR", f"Out of memory: {e}") from e
        except (ValueError, cv2.error, OSError) as e:
            raise ImageOperationError(code, str(e)) from e

    async def flip(self, data: bytes, axis: str = "horizontal") -> bytes:
        return await self._run("FLIP_ERROR", image_utils.flip_image, data, axis, self.default_quality)

    async def crop_region(self, data: bytes, left: int, top: int, width: int, height: int,
                          fmt: str = "JPEG", quality: int = None) -> bytes:
        quality = self.default_quality if quality is None else quality
        return await self._run("CROP_ERROR", image_utils.crop_image_region,
                               data, left, top, width, height, fmt, quality)

    async def compress(self, data: bytes, max_width: int, max_height: int,
                       quality: int = 80) -> CompressionResult:
        start = time.perf_counter()
        result = await self._run("COMPRESSION_ERROR", image_utils.compress_image,
                                 data, max_width, max_height, quality)
        return CompressionResult(processing_ms=(time.perf_counter() - start) * 1000.0, **result)

    async def smart_compress(self, data: bytes, target_size_kb: int) -> CompressionResult:
        start = time.perf_counter()
        result = await self._run("COMPRESSION_ERROR", image_utils.smart_compress, data, target_size_kb)
        final_quality = result.pop("final_quality")
        logger.debug(f"Smart compression settled at quality {final_quality}")
        return CompressionResult(processing_ms=(time.perf_counter() - start) * 1000.0, **result)

    async def exif_transpose(self, data: bytes) -> bytes:
        try:
            return await asyncio.to_thread(image_utils.exif_transpose_file, data, self.default_quality)
        except MemoryError as e:
            raise ImageOperationError("OOM_ERROR", f"Out of memory: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            raise ImageOperationError("DECODE_ERROR", str(e)) from e

