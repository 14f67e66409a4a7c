"""Tests for colormap lookups."""

import numpy as np
import pytest

from g3d.colormaps import (MISSING_COLOR, color_from_map, colormap_gradient, get_colormap, heat_color,
                           heat_colors, map_values)


class TestColormaps:
    """Tests for named color maps."""

    def test_default_ramp_ends(self):
        assert color_from_map(0.0) == pytest.approx((0.2, 0.2, 0.8))
        assert color_from_map(1.0) == pytest.approx((0.8, 0.2, 0.2))

    def test_values_clamped(self):
        assert color_from_map(-3.0, "viridis") == color_from_map(0.0, "viridis")
        assert color_from_map(7.0, "viridis") == color_from_map(1.0, "viridis")

    def test_named_maps_come_from_matplotlib(self):
        assert get_colormap("Inferno").name == "inferno"
        assert get_colormap("viridis") is get_colormap("viridis")

    def test_unknown_name_falls_back_to_default(self):
        assert get_colormap("rainbow") is get_colormap("default")

    def test_map_values(self):
        rgb = map_values([0.0, 5.0, 10.0, np.nan], "default")
        assert rgb.shape == (4, 3)
        np.testing.assert_allclose(rgb[0], (0.2, 0.2, 0.8))
        np.testing.assert_allclose(rgb[2], (0.8, 0.2, 0.2))
        np.testing.assert_allclose(rgb[3], MISSING_COLOR)

    def test_map_values_constant_input(self):
        rgb = map_values([2.0, 2.0], "hot")
        np.testing.assert_allclose(rgb[0], rgb[1])

    def test_gradient_string(self):
        css = colormap_gradient("plasma", stops=3)
        assert css.startswith("linear-gradient(to top, rgb(")
        assert css.endswith("100%)")
        assert css.count("rgb(") == 3

    def test_heat_color(self):
        assert heat_color(1.0) == pytest.approx((1.0, 0.0, 0.0))
        assert heat_color(0.0) == pytest.approx((0.0, 0.4, 1.0))
        assert heat_colors([0.0, 0.5, 1.0]).shape == (3, 3)
