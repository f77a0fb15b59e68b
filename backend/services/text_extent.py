"""
Pixel-based text extent probing.

Upstream estimates of where the stacked text block sits (usually produced by
a vision model) are often off by several percent. Given the fill colours of
the first and last text lines, this module scans the template pixels for the
topmost row containing the first colour and the bottommost row containing
the last colour, and reports them as canvas percentages.

Probing is best-effort: any problem (missing colour, nothing found) yields
None and the caller keeps its original estimate.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Any, Callable, Optional, Tuple

import numpy as np
from PIL import ImageColor

from domain.errors import InvalidGeometry
from services.image_ops import decode_rgb

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

# --- Tunable thresholds ---
DEFAULT_BAND = (20.0, 80.0)  # centered 60% of the canvas width
# Arrows and other decorations tend to sit at the right end of the text block.
RIGHT_EDGE_SHRINK = 0.15

NEAR_WHITE_TARGET_MIN = 230
NEAR_WHITE_PIXEL_MIN = 210

RED_TARGET_MIN_R = 180
RED_TARGET_MAX_GB = 90
RED_PIXEL_MIN_R = 150
RED_PIXEL_MIN_MARGIN = 70

# Manhattan distance over RGB; loose enough for JPEG drift.
GENERIC_MAX_DISTANCE = 160

MIN_ROW_MATCHES = 20
MIN_ROW_MATCH_FRACTION = 0.006


@dataclass(frozen=True)
class TextExtent:
    top_pct: float
    bottom_pct: float

    @property
    def height_pct(self) -> float:
        return self.bottom_pct - self.top_pct


def parse_color(value: Any) -> Optional[RGB]:
    """Parse '#fff', '#ff3344', 'white', 'rgb(255, 0, 0)'... into RGB, or None."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        rgb = ImageColor.getrgb(value.strip())
    except ValueError:
        return None
    return int(rgb[0]), int(rgb[1]), int(rgb[2])


def is_near_white(color: RGB) -> bool:
    return min(color) >= NEAR_WHITE_TARGET_MIN


def is_saturated_red(color: RGB) -> bool:
    r, g, b = color
    return r >= RED_TARGET_MIN_R and g <= RED_TARGET_MAX_GB and b <= RED_TARGET_MAX_GB


def color_matcher(target: RGB) -> Callable[[np.ndarray], np.ndarray]:
    """
    Return a vectorized predicate over (..., 3) int arrays for `target`.

    Three regimes: near-white, saturated red, and a generic distance test.
    """
    if is_near_white(target):
        return lambda px: np.all(px >= NEAR_WHITE_PIXEL_MIN, axis=-1)

    if is_saturated_red(target):
        def _red(px: np.ndarray) -> np.ndarray:
            r, g, b = px[..., 0], px[..., 1], px[..., 2]
            return (
                (r >= RED_PIXEL_MIN_R)
                & (r - g >= RED_PIXEL_MIN_MARGIN)
                & (r - b >= RED_PIXEL_MIN_MARGIN)
            )
        return _red

    ref = np.array(target, dtype=np.int32)
    return lambda px: np.abs(px - ref).sum(axis=-1) <= GENERIC_MAX_DISTANCE


def band_columns(width: int, left_pct: Optional[float], right_pct: Optional[float]) -> Optional[Tuple[int, int]]:
    """Pixel columns [x0, x1) to scan, with the right edge pulled in."""
    if left_pct is None or right_pct is None:
        left_pct, right_pct = DEFAULT_BAND
    if not (math.isfinite(left_pct) and math.isfinite(right_pct)):
        return None
    left_pct = max(0.0, min(100.0, left_pct))
    right_pct = max(0.0, min(100.0, right_pct))
    x0 = int(math.floor(left_pct / 100.0 * width))
    x1 = int(math.ceil(right_pct / 100.0 * width))
    x1 -= int(round((x1 - x0) * RIGHT_EDGE_SHRINK))
    x0 = max(0, x0)
    x1 = min(width, x1)
    if x1 <= x0:
        return None
    return x0, x1


def min_row_matches(scanned_width: int) -> int:
    return max(MIN_ROW_MATCHES, int(math.ceil(MIN_ROW_MATCH_FRACTION * scanned_width)))


def probe_text_extent(
    pixels: np.ndarray,
    top_color: Any,
    bottom_color: Any,
    left_pct: Optional[float] = None,
    right_pct: Optional[float] = None,
) -> Optional[TextExtent]:
    """
    Locate the text block's top and bottom rows within a horizontal band.

    `pixels` is an (H, W, C) array with C >= 3 (alpha is ignored). Colours
    accept anything `parse_color` does. Returns None instead of raising when
    no refinement is possible.
    """
    top_rgb = parse_color(top_color)
    bottom_rgb = parse_color(bottom_color)
    if top_rgb is None or bottom_rgb is None:
        logger.info("text extent: unparseable colour top=%r bottom=%r", top_color, bottom_color)
        return None

    if pixels.ndim != 3 or pixels.shape[2] < 3:
        logger.warning("text extent: expected (H, W, C>=3) pixels, got shape %s", pixels.shape)
        return None
    height, width = pixels.shape[0], pixels.shape[1]
    if height <= 0 or width <= 0:
        return None

    cols = band_columns(width, left_pct, right_pct)
    if cols is None:
        return None
    x0, x1 = cols
    band = pixels[:, x0:x1, :3].astype(np.int32)
    threshold = min_row_matches(x1 - x0)

    top_rows = np.nonzero(color_matcher(top_rgb)(band).sum(axis=1) >= threshold)[0]
    bottom_rows = np.nonzero(color_matcher(bottom_rgb)(band).sum(axis=1) >= threshold)[0]
    if top_rows.size == 0 or bottom_rows.size == 0:
        return None

    top_pct = float(top_rows[0]) / height * 100.0
    bottom_pct = float(bottom_rows[-1] + 1) / height * 100.0
    if not top_pct < bottom_pct:
        return None
    return TextExtent(top_pct=top_pct, bottom_pct=min(100.0, bottom_pct))


def probe_text_extent_from_bytes(
    image_bytes: bytes,
    top_color: Any,
    bottom_color: Any,
    left_pct: Optional[float] = None,
    right_pct: Optional[float] = None,
) -> Optional[TextExtent]:
    """Decode `image_bytes` and probe; undecodable images give None."""
    try:
        pixels = decode_rgb(image_bytes)
    except InvalidGeometry as e:
        logger.warning("text extent: %s", e)
        return None
    return probe_text_extent(pixels, top_color, bottom_color, left_pct, right_pct)
