"""Unit tests for image utilities."""
import io

import cv2
import numpy as np
import pytest
from PIL import Image

from facecheck.utils.image_utils import (
    clamp_quality, compress_image, crop_image_region, decode_image, encode_image,
    exif_transpose_file, flip_image, read_image_file, smart_compress, to_grayscale,
)

from conftest import image_dimensions


def half_white_jpeg(width=100, height=50):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, : width // 2] = 255
    return encode_image(image, "JPEG", 95)


class TestEncoding:
    """Test suite for encode and decode helpers."""

    def test_clamp_quality(self):
        """Test quality is clamped into 10..100."""
        assert clamp_quality(5) == 10
        assert clamp_quality(150) == 100
        assert clamp_quality(70) == 70

    def test_decode_rejects_garbage(self):
        """Test empty and undecodable data raise ValueError."""
        with pytest.raises(ValueError):
            decode_image(b"")
        with pytest.raises(ValueError):
            decode_image(b"not an image")

    @pytest.mark.parametrize("fmt", ["JPEG", "jpg", "PNG", "WEBP"])
    def test_encode_formats(self, sample_image, fmt):
        """Test supported formats keep the dimensions."""
        data = encode_image(sample_image, fmt, 80)
        assert image_dimensions(data) == (640, 480)

    def test_encode_unknown_format(self, sample_image):
        """Test unsupported formats are rejected."""
        with pytest.raises(ValueError):
            encode_image(sample_image, "GIF")


class TestTransforms:
    """Test suite for flip and crop."""

    def test_flip_horizontal(self):
        """Test the bright half moves to the other side."""
        flipped = decode_image(flip_image(half_white_jpeg(), "horizontal"))

        assert flipped[:, :10].mean() < 30
        assert flipped[:, -10:].mean() > 220

    def test_flip_unknown_axis(self):
        """Test an unknown axis is rejected."""
        with pytest.raises(ValueError):
            flip_image(half_white_jpeg(), "diagonal")

    def test_crop_coerced_into_bounds(self, sample_jpeg):
        """Test a region overhanging the image is clipped."""
        cropped = crop_image_region(sample_jpeg, 600, 400, 200, 200)
        assert image_dimensions(cropped) == (40, 80)

    def test_crop_rejects_empty_region(self, sample_jpeg):
        """Test zero-sized regions are rejected."""
        with pytest.raises(ValueError):
            crop_image_region(sample_jpeg, 10, 10, 0, 10)

    def test_grayscale(self, sample_image):
        """Test grayscale output is single channel."""
        assert to_grayscale(sample_image).ndim == 2


class TestCompression:
    """Test suite for compression helpers."""

    def test_downscales_preserving_ratio(self, sample_jpeg):
        """Test the image is scaled to fit the bounding box."""
        result = compress_image(sample_jpeg, 320, 320, 80)

        assert (result["width"], result["height"]) == (320, 240)
        assert result["original_size"] == len(sample_jpeg)
        assert result["compressed_size"] == len(result["data"])
        assert image_dimensions(result["data"]) == (320, 240)

    def test_never_upscales(self, sample_jpeg):
        """Test small images keep their size."""
        result = compress_image(sample_jpeg, 1000, 1000, 80)
        assert (result["width"], result["height"]) == (640, 480)

    def test_smart_compress_reaches_target(self):
        """Test quality and size step down until the target is met."""
        noise = np.random.default_rng(0).integers(0, 255, (480, 640, 3), dtype=np.uint8)
        data = encode_image(noise, "PNG")

        result = smart_compress(data, 20)

        assert result["compressed_size"] <= 20 * 1024
        assert result["final_quality"] < 90
        decode_image(result["data"])


class TestExif:
    """Test suite for EXIF orientation handling."""

    def test_without_orientation_returns_input(self, sample_jpeg):
        """Test untagged images pass through unchanged."""
        assert exif_transpose_file(sample_jpeg) is sample_jpeg

    def test_orientation_applied(self):
        """Test orientation 6 rotates the pixels upright."""
        exif = Image.Exif()
        exif[0x0112] = 6
        out = io.BytesIO()
        Image.new("RGB", (40, 20), "white").save(out, format="JPEG", exif=exif.tobytes())

        assert image_dimensions(exif_transpose_file(out.getvalue())) == (20, 40)

    def test_read_image_file(self, temp_dir, sample_jpeg):
        """Test undecodable files read as None."""
        good = temp_dir / "good.jpg"
        bad = temp_dir / "bad.jpg"
        good.write_bytes(sample_jpeg)
        bad.write_bytes(b"garbage")

        assert read_image_file(str(good)).shape == (480, 640, 3)
        assert read_image_file(str(bad)) is None
