"""
Tests for the polygon edit-mask rasterizer.

Run with: pytest tests/test_mask_builder.py -v
"""
import math

import numpy as np
import pytest

from domain.errors import InvalidGeometry
from domain.models import Point, Polygon
from services.image_ops import png_alpha
from services.mask_builder import (
    EDITABLE,
    PROTECTED,
    build_edit_mask_png,
    is_text_label,
    label_equals,
    polygon_to_pixels,
    rasterize_polygons,
    scanline_intersections,
)


def _poly(label, coords, pid="p"):
    return Polygon(id=pid, label=label, points=[Point(x, y) for x, y in coords])


def _square(label, x0, y0, x1, y1, pid="p"):
    return _poly(label, [(x0, y0), (x1, y0), (x1, y1), (x0, y1)], pid)


class TestPolygonToPixels:
    def test_rounds_half_up(self):
        pts = polygon_to_pixels([Point(25, 25), Point(35, 45)], 10, 10)
        assert pts == [(3, 3), (4, 5)]

    def test_clamps_out_of_range(self):
        pts = polygon_to_pixels([Point(150, -10), Point(100, 100)], 10, 20)
        assert pts == [(9, 0), (9, 19)]

    def test_drops_non_finite(self):
        pts = polygon_to_pixels([Point(math.nan, 10), Point(10, math.inf), Point(50, 50)], 10, 10)
        assert pts == [(5, 5)]


class TestScanline:
    def test_apex_gives_degenerate_span(self):
        # Triangle apex at y=0: the two edges meeting there share it.
        pts = [(5, 0), (9, 9), (0, 9)]
        assert scanline_intersections(pts, 0) == [5.0, 5.0]
        assert len(scanline_intersections(pts, 4)) == 2

    def test_horizontal_edges_ignored(self):
        pts = [(0, 0), (9, 0), (9, 9), (0, 9)]
        assert scanline_intersections(pts, 0) == [0.0, 9.0]
        # bottom row: both verticals end here (half-open), bottom edge is horizontal
        assert scanline_intersections(pts, 9) == []


class TestRasterize:
    def test_interior_editable_exterior_protected(self):
        raster = rasterize_polygons(100, 100, [_square("background", 25, 25, 75, 75)], label_equals("background"))
        assert raster.shape == (100, 100)
        assert raster.dtype == np.uint8
        assert raster[50, 50] == EDITABLE
        assert raster[5, 5] == PROTECTED
        assert raster[90, 50] == PROTECTED
        assert raster[50, 90] == PROTECTED

    def test_only_matching_labels_are_carved(self):
        polygons = [
            _square("background", 0, 0, 40, 40, "a"),
            _square("main", 60, 60, 100, 100, "b"),
        ]
        raster = rasterize_polygons(100, 100, polygons, label_equals("main"))
        assert raster[20, 20] == PROTECTED
        assert raster[80, 80] == EDITABLE

    def test_matching_polygons_union(self):
        a = _square("background", 0, 0, 40, 40, "a")
        b = _square("background", 30, 30, 70, 70, "b")
        c = _poly("background", [(60, 95), (95, 50), (99, 99)], "c")
        only_bg = label_equals("background")

        def raster(*polygons):
            return rasterize_polygons(100, 100, list(polygons), only_bg)

        assert np.array_equal(raster(a, b), np.minimum(raster(a), raster(b)))
        assert np.array_equal(raster(a, b, c), np.minimum(np.minimum(raster(a), raster(b)), raster(c)))
        # overlap of a and b stays editable
        assert raster(a, b)[35, 35] == EDITABLE
        assert raster(a, b)[20, 80] == PROTECTED

    def test_convex_polygon_every_pixel(self):
        raster = rasterize_polygons(100, 100, [_square("background", 25, 25, 75, 75)], label_equals("background"))
        expected = np.full((100, 100), PROTECTED, dtype=np.uint8)
        # rows are half-open at the bottom edge, columns are inclusive
        expected[25:75, 25:76] = EDITABLE
        assert np.array_equal(raster, expected)

    def test_concave_polygon_every_pixel(self):
        l_shape = _poly("background", [(10, 10), (60, 10), (60, 40), (40, 40), (40, 80), (10, 80)])
        raster = rasterize_polygons(100, 100, [l_shape], label_equals("background"))
        expected = np.full((100, 100), PROTECTED, dtype=np.uint8)
        expected[10:40, 10:61] = EDITABLE
        expected[40:80, 10:41] = EDITABLE
        assert np.array_equal(raster, expected)
        # the notch of the L stays protected
        assert raster[60, 50] == PROTECTED

    def test_text_predicate_covers_all_text_labels(self):
        polygons = [
            _square("text:title", 0, 0, 40, 40, "a"),
            _square("text", 60, 60, 100, 100, "b"),
            _square("main", 60, 0, 100, 40, "c"),
        ]
        raster = rasterize_polygons(100, 100, polygons, is_text_label)
        assert raster[20, 20] == EDITABLE
        assert raster[80, 80] == EDITABLE
        assert raster[20, 80] == PROTECTED

    def test_fewer_than_three_points_leaves_raster_protected(self):
        polygons = [_poly("background", [(10, 10), (90, 90)])]
        raster = rasterize_polygons(50, 50, polygons, label_equals("background"))
        assert np.all(raster == PROTECTED)

    def test_no_polygons_is_fully_protected(self):
        raster = rasterize_polygons(20, 10, [], label_equals("background"))
        assert raster.shape == (10, 20)
        assert np.all(raster == PROTECTED)

    @pytest.mark.parametrize("width,height", [(0, 10), (10, 0), (-5, 10), (10.5, 10), (True, 10)])
    def test_invalid_dimensions(self, width, height):
        with pytest.raises(InvalidGeometry):
            rasterize_polygons(width, height, [], label_equals("background"))

    def test_bow_tie_fills_both_lobes(self):
        bow_tie = _poly("background", [(10, 10), (90, 90), (90, 10), (10, 90)])
        raster = rasterize_polygons(100, 100, [bow_tie], label_equals("background"))
        assert raster[50, 20] == EDITABLE
        assert raster[50, 80] == EDITABLE
        assert raster[20, 50] == PROTECTED
        assert raster[80, 50] == PROTECTED

    def test_pentagram_centre_uses_even_odd(self):
        cx, cy, r = 50.0, 50.0, 40.0
        corners = [
            (cx + r * math.cos(math.radians(-90 + 72 * k)), cy + r * math.sin(math.radians(-90 + 72 * k)))
            for k in range(5)
        ]
        star = _poly("background", [corners[i] for i in (0, 2, 4, 1, 3)])
        raster = rasterize_polygons(100, 100, [star], label_equals("background"))
        assert raster[50, 50] == PROTECTED
        assert raster[20, 50] == EDITABLE  # top arm
        assert raster[50, 32] == EDITABLE
        assert raster[50, 68] == EDITABLE


class TestMaskPng:
    def test_png_alpha_matches_raster_and_rgb_is_black(self):
        from io import BytesIO
        from PIL import Image

        polygons = [_square("background", 60, 0, 100, 100)]
        data = build_edit_mask_png(40, 20, polygons, label_equals("background"))
        img = Image.open(BytesIO(data))
        assert img.mode == "RGBA"
        assert img.size == (40, 20)

        rgba = np.asarray(img)
        assert np.all(rgba[:, :, :3] == 0)
        expected = rasterize_polygons(40, 20, polygons, label_equals("background"))
        assert np.array_equal(png_alpha(data), expected)
        assert png_alpha(data)[10, 5] == PROTECTED
        assert png_alpha(data)[10, 30] == EDITABLE
