"""Tests for the G3D preprocessor, parser and validator."""

import math

import pytest

from g3d.errors import CircularDefinitionError, G3DSyntaxError
from g3d.ir import NamedFunction, SurfacePlot, TensorPlot, VectorPlot
from g3d.lexer import split_top_level, tokenize
from g3d.parser import parse_g3d, preprocess, resolve_function_order


SADDLE = "SET RANGE X -2 TO 2\nSET RANGE Y -2 TO 2\nSET RANGE Z -4 TO 4\nDEF FNSADDLE(x,y) = x^2 - y^2\nPLOT3D FNSADDLE(x,y)"


def parse_error(source):
    with pytest.raises(G3DSyntaxError) as excinfo:
        parse_g3d(source)
    return excinfo.value


class TestLexer:
    """Tests for the token helpers."""

    def test_numbers_with_exponents(self):
        tokens = tokenize("1e-3 + .5")
        assert [t.type for t in tokens] == ["NUMBER", "PLUS", "NUMBER"]
        assert tokens[0].value == "1e-3"

    def test_split_keeps_nested_commas(self):
        groups = split_top_level(tokenize("FNA(1, 2), [3, 4], 5"))
        assert len(groups) == 3

    def test_split_keeps_empty_groups(self):
        groups = split_top_level(tokenize("a,,b"))
        assert [len(g) for g in groups] == [1, 0, 1]


class TestPreprocess:
    """Tests for comment stripping and line joining."""

    def test_comments_and_blank_lines_dropped(self):
        lines = preprocess("# header\n\nPLOT3D x  # trailing\n")
        assert len(lines) == 1
        assert lines[0].text == "PLOT3D x"
        assert lines[0].line == 3

    def test_hash_inside_string_kept(self):
        lines = preprocess('LABEL "a # b" AT 0, 0, 0')
        assert lines[0].text == 'LABEL "a # b" AT 0, 0, 0'

    def test_backslash_continuation(self):
        lines = preprocess("DEF FNA(x) = x + \\\n    1\nPLOT3D FNA(x)")
        assert lines[0].text == "DEF FNA(x) = x + 1"
        assert lines[0].line == 1
        assert lines[1].line == 3

    def test_wrapped_definition_merged(self):
        source = "DEF TENSOR_T(x,y) = [\n  [1, 0],\n  [0, 1]]\nPLOT_TENSOR TENSOR_T AS GLYPH 'ELLIPSOID'"
        lines = preprocess(source)
        assert len(lines) == 2
        assert lines[0].text == "DEF TENSOR_T(x,y) = [[1, 0],[0, 1]]"
        assert lines[1].line == 4


class TestParser:
    """Tests for statement parsing and IR construction."""

    def test_saddle_scenario(self):
        ir = parse_g3d(SADDLE)
        assert len(ir.plots) == 1
        assert isinstance(ir.plots[0], SurfacePlot)
        assert ir.surface.expr == "x^2 - y^2"
        assert ir.surface.source == "FNSADDLE(x,y)"
        assert ir.animation is None
        assert ir.color_map == "default"
        assert ir.labels == ()
        assert ir.particles is None
        assert (ir.z_range.min, ir.z_range.max) == (-4.0, 4.0)

    def test_default_ranges(self):
        ir = parse_g3d("PLOT3D x*y")
        assert (ir.x_range.min, ir.x_range.max) == (-1.0, 1.0)

    def test_keywords_are_case_insensitive(self):
        ir = parse_g3d("set range x 0 to 3\ncolor map Plasma\nplot3d x + y")
        assert ir.x_range.max == 3.0
        assert ir.color_map == "plasma"

    def test_contour_levels_sorted_and_unique(self):
        ir = parse_g3d("PLOT3D x\nCONTOUR LEVELS 1, -1, 0, 1")
        assert ir.contours.levels == (-1.0, 0.0, 1.0)

    def test_label(self):
        ir = parse_g3d('PLOT3D x\nLABEL "look AT me" + STR(1) AT 1, FNA(2, 3), 3')
        label = ir.labels[0]
        assert label.text_expr == '"look AT me" + STR(1)'
        assert label.position_expr == ("1", "FNA(2, 3)", "3")

    def test_animation_folds_constants(self):
        ir = parse_g3d("DEF FNTOP = 4\nANIMATE t FROM 0 TO FNTOP STEP PI/4\nPLOT3D x*t")
        assert ir.animation.stop == 4.0
        assert ir.animation.step == pytest.approx(math.pi / 4)

    def test_animation_frames(self):
        ir = parse_g3d("ANIMATE p FROM 0 TO 2*PI STEP PI/16\nPLOT3D SIN(x - p)")
        assert ir.animation.frame_count == 33
        frames = list(ir.animation.frames())
        assert frames[0] == 0.0
        assert frames[-1] == pytest.approx(2 * math.pi)

    def test_vector_and_tensor_plots(self):
        source = ("DEF VEC_F(x,y) = [-y, x, 0]\n"
                  "DEF TENSOR_T(x,y) = [[1, x], [x, 1]]\n"
                  "PLOT_VECFIELD VEC_F GRID 10\n"
                  "PLOT_TENSOR TENSOR_T AS GLYPH 'ellipsoid'")
        ir = parse_g3d(source)
        # implicit flat surface goes first
        assert ir.plots[0] == SurfacePlot("0", "", implicit=True)
        assert ir.vector_plots == (VectorPlot("VEC_F", 10),)
        assert ir.tensor_plots == (TensorPlot("TENSOR_T", "ELLIPSOID"),)
        assert ir.functions["VEC_F"].kind == "vector"
        assert ir.functions["TENSOR_T"].kind == "tensor"

    def test_function_order_follows_dependencies(self):
        ir = parse_g3d("DEF FNB(x) = FNA(x) * 2\nDEF FNA(x) = x + 1\nPLOT3D FNB(x)")
        assert ir.function_order == ("FNA", "FNB")

    def test_ir_is_read_only(self):
        ir = parse_g3d(SADDLE)
        with pytest.raises(TypeError):
            ir.functions["FNX"] = None


class TestValidation:
    """Tests for fatal diagnostics."""

    def test_particle_ceiling(self):
        error = parse_error("PLOT3D x\nPARTICLES 99999")
        assert error.line == 2
        assert "exceeds the maximum" in error.cause
        assert str(error).startswith("Line 2:")

    def test_particle_count_must_be_positive(self):
        assert parse_error("PLOT3D x\nPARTICLES 0").line == 2

    def test_range_must_be_ordered(self):
        error = parse_error("SET RANGE X 2 TO -2\nPLOT3D x")
        assert error.line == 1
        assert "less than" in error.cause

    def test_range_equal_bounds(self):
        assert parse_error("SET RANGE Y 1 TO 1\nPLOT3D x").line == 1

    def test_unknown_axis(self):
        assert "axis" in parse_error("SET RANGE W 0 TO 1\nPLOT3D x").cause

    def test_unknown_statement(self):
        error = parse_error("PLOT3D x\nFROBNICATE 3")
        assert error.line == 2
        assert "Unknown or invalid statement" in error.cause

    def test_invalid_color_map(self):
        assert "Invalid color map" in parse_error("COLOR MAP rainbow\nPLOT3D x").cause

    def test_duplicate_color_map(self):
        error = parse_error("COLOR MAP hot\nCOLOR MAP cool\nPLOT3D x")
        assert error.line == 2

    def test_duplicate_definition(self):
        error = parse_error("DEF FNA = 1\nDEF FNA = 2\nPLOT3D x")
        assert error.line == 2
        assert "already defined" in error.cause

    def test_constant_prefix(self):
        assert "must start with" in parse_error("DEF SPEED = 3\nPLOT3D x").cause

    def test_duplicate_parameter(self):
        assert "Duplicate parameter" in parse_error("DEF FNA(x, x) = x\nPLOT3D x").cause

    def test_vector_needs_three_components(self):
        error = parse_error("DEF VEC_F(x,y) = [x, y]\nPLOT_VECFIELD VEC_F")
        assert "exactly 3 components" in error.cause

    def test_tensor_shape(self):
        error = parse_error("DEF TENSOR_T(x,y) = [[1, 0, 0], [0, 1, 0]]\nPLOT_TENSOR TENSOR_T AS GLYPH 'ELLIPSOID'")
        assert "2x2" in error.cause

    def test_plot_references_undefined_function(self):
        error = parse_error("PLOT_VECFIELD VEC_MISSING")
        assert error.line == 1
        assert "not defined" in error.cause

    def test_vector_grid_bounds(self):
        error = parse_error("DEF VEC_F(x,y) = [1, 0, 0]\nPLOT_VECFIELD VEC_F GRID 500")
        assert "grid size" in error.cause

    def test_unknown_glyph(self):
        error = parse_error("DEF TENSOR_T(x,y) = [[1, 0], [0, 1]]\nPLOT_TENSOR TENSOR_T AS GLYPH 'CUBE'")
        assert "glyph" in error.cause

    def test_animation_step_must_be_positive(self):
        assert "STEP" in parse_error("ANIMATE t FROM 0 TO 1 STEP 0\nPLOT3D x").cause

    def test_animation_bounds_must_be_constant(self):
        assert parse_error("ANIMATE t FROM 0 TO q STEP 1\nPLOT3D x").line == 1

    def test_circular_definition(self):
        error = parse_error("DEF FNA(x) = FNB(x)\nDEF FNB(x) = FNA(x)\nPLOT3D FNA(x)")
        assert error.line == 1
        assert "Circular definition" in error.cause

    def test_self_reference(self):
        assert parse_error("PLOT3D x\nDEF FNA(x) = FNA(x) + 1").line == 2

    def test_nothing_to_render(self):
        error = parse_error("SET RANGE X -1 TO 1\nCOLOR MAP hot")
        assert error.line == 2
        assert "Nothing to render" in error.cause

    def test_label_needs_three_coordinates(self):
        assert "exactly 3" in parse_error('PLOT3D x\nLABEL "a" AT 1, 2').cause


class TestFunctionOrder:
    """Tests for dependency ordering of named functions."""

    def test_ties_keep_definition_order(self):
        functions = {
            "FNC": NamedFunction("FNC", ("x",), "FNA(x) + FNB(x)"),
            "FNB": NamedFunction("FNB", ("x",), "x"),
            "FNA": NamedFunction("FNA", ("x",), "x"),
        }
        assert resolve_function_order(functions) == ["FNB", "FNA", "FNC"]

    def test_parameters_shadow_functions(self):
        functions = {
            "FNA": NamedFunction("FNA", ("FNB",), "FNB * 2"),
            "FNB": NamedFunction("FNB", ("x",), "FNA(x)"),
        }
        assert resolve_function_order(functions) == ["FNA", "FNB"]

    def test_cycle_reported(self):
        functions = {
            "FNA": NamedFunction("FNA", ("x",), "FNB(x)"),
            "FNB": NamedFunction("FNB", ("x",), "FNA(x)"),
        }
        with pytest.raises(CircularDefinitionError) as excinfo:
            resolve_function_order(functions)
        assert excinfo.value.cycle == ["FNA", "FNB", "FNA"]
