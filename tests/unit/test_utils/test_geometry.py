"""Unit tests for viewport fitting and bounding box helpers."""
import pytest

from facecheck.core.entities import FaceBox
from facecheck.utils.geometry import (
    fit_to_viewport, is_face_large_enough, mirror_box, padded_crop_region,
    select_largest_face, to_display_rect,
)


class TestFitToViewport:
    """Test suite for aspect-fitting an image into the viewport."""

    def test_same_ratio_fills_viewport(self):
        """Test an image with the viewport's ratio fills it exactly."""
        fit = fit_to_viewport(640, 480, 640, 480)

        assert (fit.width, fit.height, fit.offset_x, fit.offset_y) == (640, 480, 0, 0)

    def test_wide_image_is_letterboxed(self):
        """Test a wider image is width-constrained and centered vertically."""
        fit = fit_to_viewport(1280, 720, 640, 640)

        assert fit.width == pytest.approx(640)
        assert fit.height == pytest.approx(360)
        assert fit.offset_x == 0
        assert fit.offset_y == pytest.approx(140)

    def test_tall_image_is_pillarboxed(self):
        """Test a taller image is height-constrained and centered horizontally."""
        fit = fit_to_viewport(480, 640, 640, 480)

        assert fit.height == pytest.approx(480)
        assert fit.width == pytest.approx(360)
        assert fit.offset_x == pytest.approx(140)
        assert fit.offset_y == 0

    def test_aspect_ratio_preserved(self):
        """Test the fitted rectangle keeps the image ratio."""
        fit = fit_to_viewport(1920, 1080, 1000, 900)
        assert fit.width / fit.height == pytest.approx(1920 / 1080)

    @pytest.mark.parametrize("dims", [(0, 480, 640, 480), (640, -1, 640, 480), (640, 480, 0, 480)])
    def test_rejects_non_positive(self, dims):
        """Test non-positive dimensions are rejected."""
        with pytest.raises(ValueError):
            fit_to_viewport(*dims)


class TestDisplayRect:
    """Test suite for mapping boxes to viewport space."""

    def test_padding_applied_before_scaling(self):
        """Test padding is added in image space and then scaled."""
        fit = fit_to_viewport(640, 480, 1280, 960)
        rect = to_display_rect(FaceBox(100, 100, 50, 50), fit, 640, 480, padding=10)

        assert rect.left == pytest.approx(180)
        assert rect.top == pytest.approx(180)
        assert rect.width == pytest.approx(140)
        assert rect.height == pytest.approx(140)

    def test_clamped_to_fit_area(self):
        """Test the padded rectangle never leaves the displayed image."""
        fit = fit_to_viewport(640, 480, 1280, 960)
        rect = to_display_rect(FaceBox(0, 0, 50, 50), fit, 640, 480, padding=20)

        assert rect.left == 0
        assert rect.top == 0
        assert rect.width == pytest.approx(140)

    def test_offsets_applied(self):
        """Test letterbox offsets shift the rectangle."""
        fit = fit_to_viewport(1280, 720, 640, 640)
        rect = to_display_rect(FaceBox(0, 0, 100, 100), fit, 1280, 720)

        assert rect.left == pytest.approx(0)
        assert rect.top == pytest.approx(140)
        assert rect.width == pytest.approx(50)


class TestFaceSelection:
    """Test suite for largest-face selection and the size gate."""

    def test_empty(self):
        """Test no boxes yields None."""
        assert select_largest_face([]) is None

    def test_largest_wins(self):
        """Test the box with the largest area is selected."""
        boxes = [FaceBox(0, 0, 10, 10), FaceBox(50, 50, 40, 30), FaceBox(5, 5, 20, 20)]
        assert select_largest_face(boxes) == FaceBox(50, 50, 40, 30)

    def test_first_wins_ties(self):
        """Test ties resolve to the first detected box."""
        first, second = FaceBox(0, 0, 20, 20), FaceBox(100, 100, 20, 20)
        assert select_largest_face([first, second]) is first

    def test_size_gate(self):
        """Test the padded display size is compared to the minimum."""
        fit = fit_to_viewport(640, 480, 640, 480)

        assert is_face_large_enough(FaceBox(100, 100, 130, 130), fit, 640, 480, 120, padding=10)
        assert is_face_large_enough(FaceBox(100, 100, 100, 100), fit, 640, 480, 120, padding=10)
        assert not is_face_large_enough(FaceBox(100, 100, 90, 90), fit, 640, 480, 120, padding=10)

    def test_size_gate_uses_scaled_size(self):
        """Test a face that is big in the source can still be small on screen."""
        fit = fit_to_viewport(1280, 960, 320, 240)
        assert not is_face_large_enough(FaceBox(100, 100, 400, 400), fit, 1280, 960, 120)


class TestCropRegion:
    """Test suite for source-space crop regions."""

    def test_padding_clamped(self):
        """Test padding is clamped at image edges."""
        assert padded_crop_region(FaceBox(10, 10, 100, 100), 640, 480, padding=20) == (0, 0, 130, 130)

    def test_partially_outside(self):
        """Test a box past the edge is clipped."""
        assert padded_crop_region(FaceBox(600, 400, 100, 100), 640, 480) == (600, 400, 40, 80)

    def test_fully_outside(self):
        """Test a box outside the image has no region."""
        assert padded_crop_region(FaceBox(700, 10, 50, 50), 640, 480) is None

    def test_mirror_box(self):
        """Test horizontal mirroring keeps size and top."""
        assert mirror_box(FaceBox(10, 20, 30, 40), 100) == FaceBox(60, 20, 30, 40)


FIT_CASES = [
    # (img_w, img_h, viewport_w, viewport_h)
    (1920, 1080, 640, 640),
    (1280, 720, 1000, 900),
    (480, 640, 640, 480),
    (720, 1280, 1080, 1920),
    (300, 1200, 800, 600),
    (640, 480, 1280, 960),
    (500, 500, 500, 500),
    (1000, 1000, 400, 700),
]

BOXES = [
    FaceBox(0, 0, 50, 50),
    FaceBox(600, 400, 200, 200),
    FaceBox(-40, -40, 100, 100),
    FaceBox(5000, 5000, 80, 80),
    FaceBox(-500, 10, 100, 100),
    FaceBox(100, 3000, 60, 60),
]


class TestGeometryProperties:
    """Test invariants that hold for every image, viewport and box."""

    @pytest.mark.parametrize("img_w,img_h,vw,vh", FIT_CASES)
    def test_fit_contained_and_centered(self, img_w, img_h, vw, vh):
        """Test the fit keeps the ratio, stays inside and centers the slack axis."""
        fit = fit_to_viewport(img_w, img_h, vw, vh)

        assert fit.width / fit.height == pytest.approx(img_w / img_h)
        assert fit.width <= vw + 1e-6
        assert fit.height <= vh + 1e-6
        assert fit.width == pytest.approx(vw) or fit.height == pytest.approx(vh)
        assert fit.offset_x >= 0 and fit.offset_y >= 0
        assert fit.offset_x == pytest.approx((vw - fit.width) / 2)
        assert fit.offset_y == pytest.approx((vh - fit.height) / 2)

    @pytest.mark.parametrize("img_w,img_h,vw,vh", FIT_CASES)
    @pytest.mark.parametrize("box", BOXES)
    @pytest.mark.parametrize("padding", [0, 10, 40])
    def test_display_rect_inside_fit(self, img_w, img_h, vw, vh, box, padding):
        """Test display rectangles never leave the fit and never go negative."""
        fit = fit_to_viewport(img_w, img_h, vw, vh)
        rect = to_display_rect(box, fit, img_w, img_h, padding)

        assert rect.width >= 0 and rect.height >= 0
        assert fit.offset_x <= rect.left + 1e-6
        assert fit.offset_y <= rect.top + 1e-6
        assert rect.left + rect.width <= fit.offset_x + fit.width + 1e-6
        assert rect.top + rect.height <= fit.offset_y + fit.height + 1e-6

    def test_box_past_bottom_right_edge(self):
        """Test a box hanging over the far edges is cut at the fit boundary."""
        fit = fit_to_viewport(640, 480, 640, 480)
        rect = to_display_rect(FaceBox(600, 450, 100, 100), fit, 640, 480)

        assert rect.left == pytest.approx(600)
        assert rect.top == pytest.approx(450)
        assert rect.width == pytest.approx(40)
        assert rect.height == pytest.approx(30)

    def test_box_fully_outside_collapses(self):
        """Test a box entirely outside the image has zero size."""
        fit = fit_to_viewport(640, 480, 640, 480)
        rect = to_display_rect(FaceBox(700, 500, 50, 50), fit, 640, 480)

        assert rect.width == 0
        assert rect.height == 0
        assert not is_face_large_enough(FaceBox(700, 500, 50, 50), fit, 640, 480, 1)
