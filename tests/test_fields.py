"""Tests for field sampling utilities."""

import numpy as np
import pytest

from g3d.evaluator import ExpressionEvaluator
from g3d.fields import (GradientCache, central_gradient, frame_values, laplacian, potential_from_ir,
                        safe_field, safe_value, sample_surface, sample_tensor_field, sample_vector_field,
                        surface_colors)
from g3d.ir import NamedFunction, Range
from g3d.parser import parse_g3d


def bowl(x, y):
    return x ** 2 + y ** 2


UNIT = Range(-1.0, 1.0)


class TestOperators:
    """Tests for finite-difference operators."""

    def test_central_gradient(self):
        gx, gy = central_gradient(bowl, 1.0, 2.0)
        assert gx == pytest.approx(2.0, rel=1e-6)
        assert gy == pytest.approx(4.0, rel=1e-6)

    def test_central_gradient_on_arrays(self):
        gx, gy = central_gradient(bowl, np.array([0.0, 1.0]), np.array([1.0, 0.0]))
        np.testing.assert_allclose(gx, [0.0, 2.0], atol=1e-9)
        np.testing.assert_allclose(gy, [2.0, 0.0], atol=1e-9)

    def test_laplacian(self):
        assert laplacian(bowl, 0.3, -0.7) == pytest.approx(4.0, rel=1e-6)


class TestSafety:
    """Tests for non-finite and failing evaluations."""

    def test_safe_value(self):
        assert safe_value(float("nan")) == 0.0
        assert safe_value(float("inf"), default=-1.0) == -1.0
        assert safe_value(2.5) == 2.5
        np.testing.assert_array_equal(safe_value(np.array([1.0, np.inf, np.nan])), [1.0, 0.0, 0.0])

    def test_safe_field_swallows_errors(self):
        def broken(x, y):
            raise ValueError("no")

        assert safe_field(broken)(1.0, 2.0) == 0.0

    def test_safe_field_falls_back_point_by_point(self):
        def scalar_only(x, y):
            if np.ndim(x) > 0:
                raise TypeError("scalars only")
            return 1.0 / x if x != 0 else float("inf")

        result = safe_field(scalar_only)(np.array([2.0, 0.0, 4.0]), np.zeros(3))
        np.testing.assert_allclose(result, [0.5, 0.0, 0.25])


class TestGradientCache:
    """Tests for the owned gradient memo."""

    def test_hits_on_rounded_coordinates(self):
        cache = GradientCache()
        first = cache.gradient(bowl, 0.501, 0.0)
        second = cache.gradient(bowl, 0.499, 0.001)
        assert second == first
        assert (cache.hits, cache.misses) == (1, 1)
        assert (0.5, 0.0) in cache

    def test_clear_all_when_full(self):
        cache = GradientCache(capacity=2)
        cache.gradient(bowl, 0.0, 0.0)
        cache.gradient(bowl, 1.0, 1.0)
        assert len(cache) == 2
        cache.gradient(bowl, 2.0, 2.0)
        assert len(cache) == 1
        assert (2.0, 2.0) in cache

    def test_clear(self):
        cache = GradientCache()
        cache.gradient(bowl, 0.0, 0.0)
        cache.clear()
        assert len(cache) == 0


class TestSampling:
    """Tests for surface, vector and tensor sampling."""

    def test_surface_mesh_layout(self):
        mesh = sample_surface(bowl, UNIT, UNIT, steps=4)
        assert mesh.vertices.shape == (25, 3)
        assert mesh.faces.shape == (32, 3)
        assert tuple(mesh.faces[0]) == (0, 5, 1)
        assert tuple(mesh.faces[1]) == (1, 5, 6)
        np.testing.assert_allclose(mesh.vertices[6], [-0.5, -0.5, 0.5])
        assert mesh.gradient_magnitudes.shape == (25,)
        assert surface_colors(mesh, "viridis").shape == (25, 3)

    def test_surface_of_constant_field(self):
        mesh = sample_surface(lambda x, y: 1.0, UNIT, UNIT, steps=2)
        np.testing.assert_array_equal(mesh.heights, np.ones(9))

    def test_vector_field_skips_zero_vectors(self):
        evaluator = ExpressionEvaluator({"VEC_F": NamedFunction("VEC_F", ("x", "y"), "[-y, x, 0]")})
        sample = sample_vector_field(evaluator.vector_function("VEC_F"), UNIT, UNIT, grid_size=3,
                                     potential=bowl)
        assert len(sample) == 8
        np.testing.assert_allclose(sample.origins[:, 2], sample.origins[:, 0] ** 2 + sample.origins[:, 1] ** 2)
        np.testing.assert_allclose(sample.magnitudes, np.linalg.norm(sample.vectors, axis=1))

    def test_tensor_glyphs(self):
        evaluator = ExpressionEvaluator({"TENSOR_T": NamedFunction("TENSOR_T", ("x", "y"), "[[2, 0], [0, 1]]")})
        sample = sample_tensor_field(evaluator.tensor_function("TENSOR_T"), UNIT, UNIT, grid_size=5)
        assert len(sample) == 25
        np.testing.assert_allclose(np.sort(sample.eigenvalues, axis=1), np.tile([1.0, 2.0], (25, 1)))
        np.testing.assert_allclose(sample.intensity, np.ones(25))

    def test_complex_eigenvalues_dropped(self):
        evaluator = ExpressionEvaluator({"TENSOR_R": NamedFunction("TENSOR_R", ("x", "y"), "[[0, -1], [1, 0]]")})
        sample = sample_tensor_field(evaluator.tensor_function("TENSOR_R"), UNIT, UNIT, grid_size=4)
        assert len(sample) == 0


class TestPotentialFromIR:
    """Tests for binding the program surface to a potential."""

    def test_animation_parameter(self):
        ir = parse_g3d("ANIMATE t FROM 1 TO 2 STEP 0.5\nPLOT3D x + t")
        evaluator = ExpressionEvaluator.from_ir(ir)
        assert potential_from_ir(ir, evaluator)(1.0, 0.0) == pytest.approx(2.0)
        assert potential_from_ir(ir, evaluator, time=2.0)(1.0, 0.0) == pytest.approx(3.0)

    def test_frames_do_not_share_time(self):
        ir = parse_g3d("ANIMATE t FROM 0 TO 5 STEP 1\nPLOT3D x + t")
        evaluator = ExpressionEvaluator.from_ir(ir)
        first = potential_from_ir(ir, evaluator, time=0.0)
        potential_from_ir(ir, evaluator, time=3.0)
        assert first(0.0, 0.0) == 0.0
        potential_from_ir(ir, evaluator, time=4.0)
        assert potential_from_ir(ir, evaluator)(0.0, 0.0) == 0.0
        assert evaluator.get("t") is None

    def test_frame_values(self):
        ir = parse_g3d("ANIMATE t FROM 1 TO 2 STEP 0.5\nPLOT3D x + t")
        assert frame_values(ir) == {"t": 1.0}
        assert frame_values(ir, 1.5) == {"t": 1.5}
        assert frame_values(parse_g3d("PLOT3D x"), 1.5) == {}

    def test_unevaluable_surface_is_flat(self):
        ir = parse_g3d("PLOT3D FNMISSING(x)")
        evaluator = ExpressionEvaluator.from_ir(ir)
        with pytest.warns(UserWarning):
            potential = potential_from_ir(ir, evaluator)
        assert potential(0.5, 0.5) == 0.0
