"""
Polygon to edit-mask rasterizer.

Masks follow the image edit API convention: alpha=255 is protected, alpha=0
is editable. A fresh raster is fully protected and editable area is carved
out by scanline-filling every polygon whose label passes `include_label`.
Several matching polygons always union; they never intersect.
"""
from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, List, Sequence, Tuple

import numpy as np

from domain.errors import InvalidGeometry
from domain.models import Point, Polygon
from services.image_ops import alpha_mask_to_png

logger = logging.getLogger(__name__)

PROTECTED = 255
EDITABLE = 0

LabelPredicate = Callable[[str], bool]
PixelPoint = Tuple[int, int]


def _clamp_int(value: float, lo: int, hi: int) -> int:
    if not math.isfinite(value):
        return lo
    return max(lo, min(hi, int(value)))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def validate_dimensions(width: int, height: int) -> None:
    for name, dim in (("width", width), ("height", height)):
        if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)) or dim <= 0:
            raise InvalidGeometry(f"Invalid mask dimensions: {name}={dim!r}")


def new_protected_raster(width: int, height: int) -> np.ndarray:
    validate_dimensions(width, height)
    return np.full((height, width), PROTECTED, dtype=np.uint8)


def polygon_to_pixels(points: Iterable[Point], width: int, height: int) -> List[PixelPoint]:
    """Convert percentage points to clamped pixel coordinates, dropping non-finite ones."""
    out: List[PixelPoint] = []
    for pt in points:
        if not pt.is_finite:
            continue
        pt = pt.clamped()
        x = _clamp_int(_round_half_up(pt.x_pct / 100.0 * width), 0, width - 1)
        y = _clamp_int(_round_half_up(pt.y_pct / 100.0 * height), 0, height - 1)
        out.append((x, y))
    return out


def scanline_intersections(points: Sequence[PixelPoint], y: int) -> List[float]:
    """
    X positions where scanline `y` crosses the polygon outline, sorted.

    Edges use the half-open rule yMin <= y < yMax so a shared vertex is
    counted once; horizontal edges never contribute.
    """
    xs: List[float] = []
    n = len(points)
    for i in range(n):
        ax, ay = points[i]
        bx, by = points[(i + 1) % n]
        if ay == by:
            continue
        if y < min(ay, by) or y >= max(ay, by):
            continue
        t = (y - ay) / (by - ay)
        xs.append(ax + t * (bx - ax))
    xs.sort()
    return xs


def fill_polygon(raster: np.ndarray, points: Sequence[PixelPoint], alpha: int = EDITABLE) -> None:
    """Scanline-fill a pixel polygon into `raster` in place (even-odd spans)."""
    if len(points) < 3:
        return
    height, width = raster.shape
    min_y = _clamp_int(min(p[1] for p in points), 0, height - 1)
    max_y = _clamp_int(max(p[1] for p in points), 0, height - 1)

    for y in range(min_y, max_y + 1):
        xs = scanline_intersections(points, y)
        if len(xs) < 2:
            continue
        for k in range(0, len(xs) - 1, 2):
            x0 = _clamp_int(math.ceil(xs[k]), 0, width - 1)
            x1 = _clamp_int(math.floor(xs[k + 1]), 0, width - 1)
            if x1 < x0:
                continue
            raster[y, x0:x1 + 1] = alpha


def matching_polygons(polygons: Iterable[Polygon], include_label: LabelPredicate) -> List[Polygon]:
    return [p for p in polygons if include_label(str(p.label or "").strip())]


def rasterize_polygons(
    width: int,
    height: int,
    polygons: Iterable[Polygon],
    include_label: LabelPredicate,
) -> np.ndarray:
    """
    Build an (height, width) alpha raster with matching polygons editable.

    Raises InvalidGeometry for non-positive dimensions before allocating.
    """
    raster = new_protected_raster(width, height)
    for polygon in matching_polygons(polygons, include_label):
        pts = polygon_to_pixels(polygon.points, width, height)
        if len(pts) < 3:
            logger.debug("Skipping polygon %s: fewer than 3 usable points", polygon.id)
            continue
        fill_polygon(raster, pts, EDITABLE)
    return raster


def build_edit_mask_png(
    width: int,
    height: int,
    polygons: Iterable[Polygon],
    include_label: LabelPredicate,
) -> bytes:
    """Rasterize matching polygons and encode the result as an RGBA PNG mask."""
    return alpha_mask_to_png(rasterize_polygons(width, height, polygons, include_label))


def label_equals(label: str) -> LabelPredicate:
    """Predicate matching exactly one canonical label."""
    return lambda candidate: candidate == label


def is_text_label(label: str) -> bool:
    """Predicate for `text` and any `text:<key>` label."""
    return label == "text" or label.startswith("text:")
