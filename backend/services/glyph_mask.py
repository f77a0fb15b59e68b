"""
Glyph-aware mask refinement.

Authors draw loose polygons around text banners. Left as-is, an edit pass
could repaint the whole banner (panels, boxes) instead of only the letters.
This module starts from the full polygon and keeps editable only the
neighbourhood of high-frequency pixels (glyph strokes, outlines, shadows)
found in the source image, by comparing it against a blurred copy.

Refinement never grows the editable area: every pixel left editable was
inside a matching polygon.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from domain.models import Polygon
from services.image_ops import alpha_mask_to_png, blurred_crop_rgb, crop_rgb, dilate, open_image, to_rgb
from services.mask_builder import (
    EDITABLE,
    PROTECTED,
    LabelPredicate,
    PixelPoint,
    fill_polygon,
    matching_polygons,
    new_protected_raster,
    polygon_to_pixels,
)

logger = logging.getLogger(__name__)

# --- Tunable constants ---
GLYPH_BOX_PADDING = 6
GLYPH_BLUR_RADIUS = 6
# Sum of |R|+|G|+|B| deltas against the blurred copy; tuned for 8-bit channels.
GLYPH_EDGE_THRESHOLD = 26
GLYPH_DILATE_RADIUS = 3


def polygon_bounds(
    points: Sequence[PixelPoint],
    width: int,
    height: int,
    pad: int = GLYPH_BOX_PADDING,
) -> Optional[Tuple[int, int, int, int]]:
    """
    Padded inclusive bounding box (left, top, right, bottom) clamped to the image.

    Returns None when the vertices enclose zero area.
    """
    if not points:
        return None
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    if max(xs) == min(xs) or max(ys) == min(ys):
        return None
    left = max(0, min(xs) - pad)
    top = max(0, min(ys) - pad)
    right = min(width - 1, max(xs) + pad)
    bottom = min(height - 1, max(ys) + pad)
    if right < left or bottom < top:
        return None
    return left, top, right, bottom


def edge_map(rgb: Image.Image, box: Tuple[int, int, int, int]) -> np.ndarray:
    """Boolean map of high-frequency pixels inside an exclusive crop box."""
    original = crop_rgb(rgb, box)
    blurred = blurred_crop_rgb(rgb, box, GLYPH_BLUR_RADIUS)
    diff = np.abs(original - blurred).sum(axis=2)
    return diff >= GLYPH_EDGE_THRESHOLD


def build_text_glyph_mask(
    source_image: bytes,
    width: int,
    height: int,
    polygons: Iterable[Polygon],
    include_label: LabelPredicate,
) -> np.ndarray:
    """
    Rasterize matching polygons, then shrink each to its glyph neighbourhood.

    `source_image` is the read-only reference for where content lives; it is
    resized to (width, height) when its dimensions differ from the raster.
    """
    raster = new_protected_raster(width, height)
    polys = matching_polygons(polygons, include_label)
    if not polys:
        return raster

    img = open_image(source_image)
    if img.size != (width, height):
        img = img.resize((width, height), Image.Resampling.LANCZOS)
    rgb = to_rgb(img)

    for polygon in polys:
        pts = polygon_to_pixels(polygon.points, width, height)
        if len(pts) < 3:
            continue
        bounds = polygon_bounds(pts, width, height)
        if bounds is None:
            logger.info("Skipping glyph refinement for polygon %s: zero-area bounds", polygon.id)
            continue

        fill_polygon(raster, pts, EDITABLE)

        left, top, right, bottom = bounds
        grown = dilate(edge_map(rgb, (left, top, right + 1, bottom + 1)), GLYPH_DILATE_RADIUS)
        region = raster[top:bottom + 1, left:right + 1]
        region[(~grown) & (region == EDITABLE)] = PROTECTED

    return raster


def build_text_glyph_mask_png(
    source_image: bytes,
    width: int,
    height: int,
    polygons: Iterable[Polygon],
    include_label: LabelPredicate,
) -> bytes:
    return alpha_mask_to_png(build_text_glyph_mask(source_image, width, height, polygons, include_label))
