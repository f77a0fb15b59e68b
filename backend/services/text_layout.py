"""
Text block helpers built on the analysed template layout.
"""
from __future__ import annotations

from dataclasses import replace
import logging
from typing import List, Optional, Sequence, Tuple

from domain.models import Point, Polygon, TextBlock, TextField
from services.text_extent import probe_text_extent_from_bytes

logger = logging.getLogger(__name__)

AUTO_TEXT_LABEL = "text:auto"
AUTO_TEXT_PAD_PCT = 2.0
# Used when no analysed block is available: a top banner covering typical thumbnail text.
FALLBACK_BLOCK = (2.0, 98.0, 2.0, 55.0)


def _clamp_pct(n: float) -> float:
    return max(0.0, min(100.0, n))


def block_band(block: TextBlock) -> Optional[Tuple[float, float]]:
    """Horizontal (left_pct, right_pct) band covered by the block, if known."""
    if block.width_pct is None or not 0 < block.width_pct <= 100:
        return None
    if block.centered:
        left = (100.0 - block.width_pct) / 2.0
        return left, 100.0 - left
    # Non-centered blocks are usually a top-left banner.
    return 2.0, _clamp_pct(2.0 + block.width_pct)


def line_colors(text_fields: Sequence[TextField]) -> Tuple[Optional[str], Optional[str]]:
    """Fill colours of the first and last text lines."""
    if not text_fields:
        return None, None
    return text_fields[0].fill_color, text_fields[-1].fill_color


def refine_text_block(
    block: TextBlock,
    image_bytes: bytes,
    top_color: Optional[str],
    bottom_color: Optional[str],
) -> TextBlock:
    """
    Correct the block's vertical extent against the template pixels.

    Returns the original block untouched when probing finds nothing.
    """
    band = block_band(block)
    left, right = band if band else (None, None)
    extent = probe_text_extent_from_bytes(image_bytes, top_color, bottom_color, left, right)
    if extent is None:
        logger.info("text block refinement skipped; keeping analysed extents")
        return block
    logger.info(
        "text block refined top=%.2f->%.2f bottom=%.2f->%.2f",
        block.top_pct or -1, extent.top_pct, block.bottom_pct or -1, extent.bottom_pct,
    )
    return replace(
        block,
        top_pct=round(extent.top_pct, 2),
        bottom_pct=round(extent.bottom_pct, 2),
        height_pct=round(extent.height_pct, 2),
    )


def build_auto_text_polygon(block: Optional[TextBlock]) -> Polygon:
    """
    A padded rectangle labelled `text:auto` around the analysed text block.

    Falls back to a conservative top banner when the block has no usable extents.
    """
    if block is not None and block.has_extents:
        left, right = block_band(block) or (2.0, 98.0)
        top, bottom = block.top_pct, block.bottom_pct
    else:
        left, right, top, bottom = FALLBACK_BLOCK

    x0 = _clamp_pct(left - AUTO_TEXT_PAD_PCT)
    x1 = _clamp_pct(right + AUTO_TEXT_PAD_PCT)
    y0 = _clamp_pct(top - AUTO_TEXT_PAD_PCT)
    y1 = _clamp_pct(bottom + AUTO_TEXT_PAD_PCT)
    points: List[Point] = [Point(x0, y0), Point(x1, y0), Point(x1, y1), Point(x0, y1)]
    return Polygon(id="auto-text", label=AUTO_TEXT_LABEL, points=points, color="#00aaff")
