"""Tests for Marching Squares isoline extraction."""

import numpy as np
import pytest

from g3d.contours import (case_indices, extract_contours, extract_isolines, interpolate,
                          marching_squares, stitch_segments)
from g3d.ir import Range

UNIT = Range(-1.0, 1.0)


def segment_set(segments):
    return {tuple(sorted(tuple(np.round(p, 9)) for p in seg)) for seg in segments}


class TestMarchingSquares:
    """Tests for single-cell cases."""

    def test_interpolation_on_bilinear_cell(self):
        # f(x, y) = x + y + x*y sampled on the unit cell
        xs = np.array([0.0, 1.0])
        ys = np.array([0.0, 1.0])
        values = np.array([[0.0, 1.0],
                           [1.0, 3.0]])
        segments = marching_squares(values, xs, ys, 0.5)
        assert case_indices(values, 0.5)[0, 0] == 1
        assert segment_set(segments) == segment_set([[(0.0, 0.5), (0.5, 0.0)]])

    def test_crossing_matches_field(self):
        xs = np.array([0.0, 1.0])
        ys = np.array([0.0, 1.0])
        values = np.array([[0.0, 1.0],
                           [1.0, 3.0]])
        for (x0, y0), (x1, y1) in marching_squares(values, xs, ys, 2.0):
            for x, y in ((x0, y0), (x1, y1)):
                # on a cell edge the bilinear field is linear, so the crossing is exact
                assert x + y + x * y == pytest.approx(2.0)

    def test_saddle_cases_emit_both_segments(self):
        xs = np.array([0.0, 1.0])
        ys = np.array([0.0, 1.0])
        values = np.array([[1.0, 0.0],
                           [0.0, 1.0]])
        assert case_indices(values, 0.5)[0, 0] == 10
        assert len(marching_squares(values, xs, ys, 0.5)) == 2
        assert case_indices(1.0 - values, 0.5)[0, 0] == 5
        assert len(marching_squares(1.0 - values, xs, ys, 0.5)) == 2

    def test_uniform_cells_emit_nothing(self):
        xs = np.array([0.0, 1.0])
        ys = np.array([0.0, 1.0])
        assert marching_squares(np.zeros((2, 2)), xs, ys, 1.0).shape == (0, 2, 2)
        assert marching_squares(np.ones((2, 2)) * 2, xs, ys, 1.0).shape == (0, 2, 2)

    def test_flat_edge_uses_midpoint(self):
        assert interpolate(1.0, 1.0, 0.0, 2.0, 1.0) == 1.0


class TestStitching:
    """Tests for joining segments into polylines."""

    def test_open_chain(self):
        segments = np.array([[[1.0, 0.0], [2.0, 0.0]],
                             [[0.0, 0.0], [1.0, 0.0]]])
        polylines = stitch_segments(segments)
        assert len(polylines) == 1
        np.testing.assert_allclose(polylines[0][:, 0], [0.0, 1.0, 2.0])

    def test_disjoint_segments(self):
        segments = np.array([[[0.0, 0.0], [1.0, 0.0]],
                             [[5.0, 5.0], [6.0, 5.0]]])
        assert len(stitch_segments(segments)) == 2


class TestExtraction:
    """Tests for isolines of sampled fields."""

    def test_vertical_line(self):
        isolines = extract_isolines(lambda x, y: x + 0 * y, UNIT, UNIT, 0.05, resolution=10)
        assert len(isolines) == 10
        np.testing.assert_allclose(isolines.segments[:, :, 0], 0.05)
        assert len(isolines.polylines) == 1
        line = isolines.polylines[0]
        assert len(line) == 11
        np.testing.assert_allclose(line.aux, 0.05)
        np.testing.assert_allclose(line.magnitudes, 1.0, rtol=1e-6)

    def test_circle_is_closed(self):
        isolines = extract_isolines(lambda x, y: x ** 2 + y ** 2, UNIT, UNIT, 0.3, resolution=40)
        assert len(isolines.polylines) == 1
        points = isolines.polylines[0].points
        np.testing.assert_allclose(points[0], points[-1])
        radii = np.hypot(points[:, 0], points[:, 1])
        np.testing.assert_allclose(radii, np.sqrt(0.3), atol=0.01)

    def test_levels_share_one_grid(self):
        calls = []

        def field(x, y):
            calls.append(np.shape(x))
            return x + y

        results = extract_contours(field, UNIT, UNIT, [-0.5, 0.0, 0.5], resolution=20)
        assert [r.level for r in results] == [-0.5, 0.0, 0.5]
        assert calls[0] == (21, 21)
        assert sum(1 for shape in calls if shape == (21, 21)) == 1

    def test_height_lifts_segments(self):
        results = extract_contours(lambda x, y: x, UNIT, UNIT, [0.25], resolution=8,
                                   height=lambda x, y: x + 1.0, lift=0.5)
        np.testing.assert_allclose(results[0].segments[:, :, 2], 1.75)
