"""Image processing utilities.

Synchronous OpenCV/Pillow helpers operating on encoded image bytes. They
raise plain ``ValueError``/``cv2.error``; the async wrapper in
``facecheck.services.image_operations`` maps those to typed errors.
"""

import io
import cv2
import numpy as np
from PIL import Image, ImageOps
from typing import Dict, Optional

_ENCODE_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "WEBP": ".webp",
}


def clamp_quality(quality: int) -> int:
    """Clamp encoder quality into 10..100."""
    return max(10, min(100, int(quality)))


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into a BGR array."""
    if not data:
        raise ValueError("No image data")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return image


def encode_image(image: np.ndarray, fmt: str = "JPEG", quality: int = 95) -> bytes:
    """Encode a BGR array. PNG is lossless and ignores quality."""
    fmt = fmt.upper()
    if fmt == "JPG":
        fmt = "JPEG"
    if fmt not in _ENCODE_EXTENSIONS:
        raise ValueError(f"Unsupported image format: {fmt}")

    quality = clamp_quality(quality)
    if fmt == "JPEG":
        params = [cv2.IMWRITE_JPEG_QUALITY, quality]
    elif fmt == "WEBP":
        params = [cv2.IMWRITE_WEBP_QUALITY, quality]
    else:
        params = []

    ok, encoded = cv2.imencode(_ENCODE_EXTENSIONS[fmt], image, params)
    if not ok:
        raise ValueError(f"Failed to encode image as {fmt}")
    return encoded.tobytes()


def flip_image(data: bytes, axis: str = "horizontal", quality: int = 95) -> bytes:
    """Mirror an encoded image. ``axis`` is 'horizontal' or 'vertical'."""
    codes = {"horizontal": 1, "vertical": 0}
    if axis not in codes:
        raise ValueError(f"Unknown flip axis: {axis}")
    image = decode_image(data)
    return encode_image(cv2.flip(image, codes[axis]), "JPEG", quality)


def crop_array(image: np.ndarray, left: int, top: int, width: int, height: int) -> np.ndarray:
    """Crop an array, coercing the rectangle into the image bounds."""
    h, w = image.shape[:2]
    x1 = max(0, min(int(left), w - 1))
    y1 = max(0, min(int(top), h - 1))
    x2 = max(x1 + 1, min(int(left) + int(width), w))
    y2 = max(y1 + 1, min(int(top) + int(height), h))
    return image[y1:y2, x1:x2]


def crop_image_region(data: bytes, left: int, top: int, width: int, height: int,
                      fmt: str = "JPEG", quality: int = 95) -> bytes:
    """Crop encoded image bytes to a rectangle and re-encode."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid crop size {width}x{height}")
    image = decode_image(data)
    return encode_image(crop_array(image, left, top, width, height), fmt, quality)


def resize_image(image: np.ndarray, max_width: int = 960, max_height: int = 720) -> np.ndarray:
    """Resize image while maintaining aspect ratio. Never upscales."""
    h, w = image.shape[:2]

    scale = min(max_width / w, max_height / h, 1.0)
    if scale >= 1.0:
        return image

    new_w = max(1, int(w * scale))
    new_h = max(1, int(h * scale))

    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def compress_image(data: bytes, max_width: int, max_height: int,
                   quality: int = 80) -> Dict[str, object]:
    """Downscale to fit max_width x max_height and re-encode as JPEG.

    Returns:
        dict with ``data``, ``original_size``, ``compressed_size``,
        ``compression_ratio``, ``width`` and ``height``
    """
    image = resize_image(decode_image(data), max_width, max_height)
    encoded = encode_image(image, "JPEG", quality)
    h, w = image.shape[:2]
    return {
        "data": encoded,
        "original_size": len(data),
        "compressed_size": len(encoded),
        "compression_ratio": len(encoded) / len(data) if data else 0.0,
        "width": w,
        "height": h,
    }


def smart_compress(data: bytes, target_size_kb: int) -> Dict[str, object]:
    """Step quality down (and shrink the image) until the result fits target_size_kb.

    Returns the same keys as ``compress_image`` plus ``final_quality``.
    """
    target_size = target_size_kb * 1024
    image = decode_image(data)
    quality = 90
    encoded = encode_image(image, "JPEG", quality)

    while len(encoded) > target_size and quality > 10:
        scale = (target_size / len(encoded)) ** 0.5
        if scale < 1.0:
            h, w = image.shape[:2]
            image = cv2.resize(image, (max(1, int(w * scale)), max(1, int(h * scale))),
                               interpolation=cv2.INTER_AREA)
        quality -= 10
        encoded = encode_image(image, "JPEG", quality)

    h, w = image.shape[:2]
    return {
        "data": encoded,
        "original_size": len(data),
        "compressed_size": len(encoded),
        "compression_ratio": len(encoded) / len(data) if data else 0.0,
        "width": w,
        "height": h,
        "final_quality": quality,
    }


def exif_transpose_file(data: bytes, quality: int = 95) -> bytes:
    """Apply the EXIF orientation tag so pixel data matches what a viewer shows.

    Returns the input unchanged when the image has no orientation tag.
    """
    with Image.open(io.BytesIO(data)) as pil:
        orientation = pil.getexif().get(0x0112)
        if orientation in (None, 1):
            return data
        transposed = ImageOps.exif_transpose(pil)
        if transposed.mode not in ("RGB", "L"):
            transposed = transposed.convert("RGB")
        out = io.BytesIO()
        transposed.save(out, format="JPEG", quality=clamp_quality(quality))
        return out.getvalue()


def convert_color_space(image: np.ndarray, conversion: int) -> np.ndarray:
    """Convert image color space."""
    return cv2.cvtColor(image, conversion)


def to_grayscale(image: np.ndarray, equalize: bool = True) -> np.ndarray:
    """Grayscale copy for the face detector, optionally histogram equalized."""
    gray = convert_color_space(image, cv2.COLOR_BGR2GRAY)
    return cv2.equalizeHist(gray) if equalize else gray


def read_image_file(path: str) -> Optional[np.ndarray]:
    """Read an image from disk, returning None when it cannot be decoded."""
    with open(path, "rb") as f:
        data = f.read()
    try:
        return decode_image(data)
    except ValueError:
        return None
