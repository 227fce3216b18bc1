"""Geometry and bounding box utilities.

Boxes coming out of the detector are in source-image pixels. The display
layer draws in viewport pixels, where the frame is aspect-fitted and
centered. Everything here is pure so it can be called from any thread.
"""

import os
from typing import Iterable, Optional, Tuple

from ..core.entities import DisplayFit, DisplayRect, FaceBox


def fit_to_viewport(img_w, img_h, viewport_w, viewport_h) -> DisplayFit:
    """Largest centered rectangle with the image aspect ratio inside the viewport."""
    if img_w <= 0 or img_h <= 0 or viewport_w <= 0 or viewport_h <= 0:
        raise ValueError(
            f"Dimensions must be positive: image {img_w}x{img_h}, viewport {viewport_w}x{viewport_h}"
        )

    image_ratio = img_w / img_h
    viewport_ratio = viewport_w / viewport_h

    if image_ratio > viewport_ratio:
        # wider than the viewport: letterbox top and bottom
        width = float(viewport_w)
        height = viewport_w / image_ratio
        return DisplayFit(width, height, 0.0, (viewport_h - height) / 2.0)

    height = float(viewport_h)
    width = viewport_h * image_ratio
    return DisplayFit(width, height, (viewport_w - width) / 2.0, 0.0)


def to_display_rect(box: FaceBox, fit: DisplayFit, img_w, img_h, padding=0) -> DisplayRect:
    """Map a source-space box to a padded, clamped viewport rectangle."""
    scale_x = fit.width / img_w
    scale_y = fit.height / img_h

    # padding is applied in image space, before scaling
    x1 = (box.left - padding) * scale_x + fit.offset_x
    y1 = (box.top - padding) * scale_y + fit.offset_y
    x2 = (box.left + box.width + padding) * scale_x + fit.offset_x
    y2 = (box.top + box.height + padding) * scale_y + fit.offset_y

    min_x, max_x = fit.offset_x, fit.offset_x + fit.width
    min_y, max_y = fit.offset_y, fit.offset_y + fit.height

    x1 = min(max(x1, min_x), max_x)
    y1 = min(max(y1, min_y), max_y)
    x2 = min(max(x2, min_x), max_x)
    y2 = min(max(y2, min_y), max_y)

    return DisplayRect(x1, y1, max(0.0, x2 - x1), max(0.0, y2 - y1))


def select_largest_face(boxes: Iterable[FaceBox]) -> Optional[FaceBox]:
    """Box with the largest area; the first one wins ties."""
    largest = None
    for box in boxes:
        if largest is None or box.area > largest.area:
            largest = box
    return largest


def is_face_large_enough(box: FaceBox, fit: DisplayFit, img_w, img_h,
                         min_display_size, padding=0) -> bool:
    """True iff the padded on-screen rectangle is at least min_display_size on both sides."""
    rect = to_display_rect(box, fit, img_w, img_h, padding)
    return rect.width >= min_display_size and rect.height >= min_display_size


def padded_crop_region(box: FaceBox, img_w, img_h, padding=0) -> Optional[Tuple[int, int, int, int]]:
    """Integer (left, top, width, height) crop rectangle in source space.

    The box is clamped to the image, grown by ``padding`` and clamped again.
    Returns None when nothing of the box lies inside the image.
    """
    x1 = max(0, int(box.left))
    y1 = max(0, int(box.top))
    x2 = min(int(img_w), int(box.left + box.width))
    y2 = min(int(img_h), int(box.top + box.height))
    if x2 <= x1 or y2 <= y1:
        return None

    x1 = max(0, x1 - int(padding))
    y1 = max(0, y1 - int(padding))
    x2 = min(int(img_w), x2 + int(padding))
    y2 = min(int(img_h), y2 + int(padding))
    return x1, y1, x2 - x1, y2 - y1


def mirror_box(box: FaceBox, img_w) -> FaceBox:
    """Mirror a box horizontally (front camera preview convention)."""
    return FaceBox(img_w - (box.left + box.width), box.top, box.width, box.height)


def ensure_dirs(*dirs):
    """Create directories if they don't exist."""
    for d in dirs:
        os.makedirs(d, exist_ok=True)
