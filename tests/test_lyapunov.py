"""Tests for the finite-time Lyapunov estimator."""

import numpy as np
import pytest

from g3d.ir import Range
from g3d.lyapunov import LyapunovConfig, integrate_future, lyapunov_exponent, lyapunov_grid

UNIT = Range(-1.0, 1.0)


def bowl(x, y):
    return x ** 2 + y ** 2


def ridge(x, y):
    return y ** 2 - x ** 2


class TestLyapunov:
    """Tests for divergence estimates."""

    def test_default_values(self):
        config = LyapunovConfig()
        assert config.steps == 100
        assert config.dt == 0.02
        assert config.perturbation == 1e-3

    def test_bowl_minimum_is_stable(self):
        for _ in range(3):
            assert lyapunov_exponent(bowl, 0.0, 0.0) < 0

    def test_ridge_is_unstable(self):
        assert lyapunov_exponent(ridge, 0.0, 0.0) > 0

    def test_flat_potential_is_neutral(self):
        # nothing moves, so the separation stays at the perturbation
        assert lyapunov_exponent(lambda x, y: 0 * x, 0.3, 0.3) == pytest.approx(0.0, abs=1e-9)

    def test_array_inputs(self):
        result = lyapunov_exponent(bowl, np.zeros(3), np.linspace(-0.5, 0.5, 3))
        assert result.shape == (3,)
        assert np.all(result < 0)

    def test_non_finite_dynamics_contribute_nothing(self):
        assert lyapunov_exponent(lambda x, y: np.nan * x, 0.0, 0.0) == 0.0

    def test_integrate_future_shape(self):
        xs, ys = integrate_future(bowl, np.zeros((2, 3)), np.ones((2, 3)), LyapunovConfig(steps=7))
        assert xs.shape == (7, 2, 3)
        assert ys.shape == (7, 2, 3)


class TestLyapunovGrid:
    """Tests for gridded estimates."""

    def test_normalized_grid(self):
        grid = lyapunov_grid(ridge, UNIT, UNIT, width=5, height=4, config=LyapunovConfig(steps=30))
        assert grid.shape == (4, 5)
        assert grid.max() == pytest.approx(1.0)
        assert grid.min() >= 0.0

    def test_raw_grid(self):
        grid = lyapunov_grid(bowl, UNIT, UNIT, width=3, height=3, config=LyapunovConfig(steps=30),
                             normalize=False)
        assert np.all(grid < 0)
