"""
G3D compiler facade.

Wires the parser, the expression evaluator and the numerical algorithms
into one object per program, and ships the built-in example programs.
"""

import time
import warnings
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .contours import IsolineSet, extract_contours
from .errors import G3DSyntaxError
from .evaluator import ExpressionEvaluator
from .fields import (GradientCache, SurfaceMesh, TensorGlyphSample, VectorFieldSample, frame_values,
                     potential_from_ir, sample_surface, sample_tensor_field, sample_vector_field,
                     surface_colors)
from .geodesic import GeodesicPath, MeshGeodesics
from .ir import GraphIR, Particle, TraceSample
from .lyapunov import LyapunovConfig, lyapunov_grid
from .parser import parse_g3d
from .particles import EXCEPTIONAL_POINTS, FluxDensity, ParticleIntegrator, PhysicsConfig
from .streamlines import TracerConfig, trace_streamlines, trace_vector_field

DEFAULT_PARTICLE_COUNT = 100


class G3DCompiler:
    """
    End-to-end pipeline for one G3D program.

    compile_dsl() parses the source and binds an evaluator; the remaining
    methods run the numerical engines against the compiled program for a
    given animation time.
    """

    def __init__(self):
        self.source: Optional[str] = None
        self.ir: Optional[GraphIR] = None
        self.evaluator: Optional[ExpressionEvaluator] = None
        self.compilation_time = 0.0

    def compile_dsl(self, source: str) -> dict:
        """
        Complete compilation pipeline

        Args:
            source: G3D program text

        Returns:
            Compilation result dictionary. On failure 'success' is False and
            'error' / 'line' say why; no IR is kept.
        """
        start_time = time.time()
        self.source = source
        self.ir = None
        self.evaluator = None

        try:
            ir = parse_g3d(source)
        except G3DSyntaxError as e:
            return {
                'success': False,
                'error': str(e),
                'line': e.line,
                'cause': e.cause,
                'compilation_time': time.time() - start_time,
            }
        except Exception as e:
            import traceback
            return {
                'success': False,
                'error': str(e),
                'line': None,
                'traceback': traceback.format_exc(),
                'compilation_time': time.time() - start_time,
            }

        self.ir = ir
        self.evaluator = ExpressionEvaluator.from_ir(ir)
        self.compilation_time = time.time() - start_time

        return {
            'success': True,
            'ir': ir,
            'functions': list(ir.function_order),
            'unbound': dict(self.evaluator.unbound),
            'plots': [p.type for p in ir.plots],
            'frames': ir.animation.frame_count if ir.animation else 1,
            'compilation_time': self.compilation_time,
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _require(self):
        if self.ir is None:
            raise RuntimeError("No compiled program. Call compile_dsl() first.")

    def potential(self, time: Optional[float] = None):
        """Safe phi(x, y) for the given animation time"""
        self._require()
        return potential_from_ir(self.ir, self.evaluator, time)

    def frames(self) -> List[Optional[float]]:
        self._require()
        if self.ir.animation is None:
            return [None]
        return list(self.ir.animation.frames())

    def surface_mesh(self, time: Optional[float] = None, steps: int = 60) -> SurfaceMesh:
        self._require()
        return sample_surface(self.potential(time), self.ir.x_range, self.ir.y_range, steps)

    def surface_colors(self, mesh: SurfaceMesh) -> np.ndarray:
        """Per-vertex RGB of a surface mesh in the program's COLOR MAP over its Z range"""
        self._require()
        return surface_colors(mesh, self.ir.color_map, self.ir.z_range)

    def vector_fields(self, time: Optional[float] = None) -> Dict[str, VectorFieldSample]:
        self._require()
        potential = self.potential(time)
        samples = {}
        for plot in self.ir.vector_plots:
            if plot.fn_name in self.evaluator.unbound:
                warnings.warn(f"Skipping vector field {plot.fn_name}: {self.evaluator.unbound[plot.fn_name]}")
                continue
            vector_fn = partial(self.evaluator.vector_function(plot.fn_name), **frame_values(self.ir, time))
            samples[plot.fn_name] = sample_vector_field(vector_fn,
                                                        self.ir.x_range, self.ir.y_range,
                                                        plot.grid_size, potential)
        return samples

    def tensor_glyphs(self, time: Optional[float] = None) -> Dict[str, TensorGlyphSample]:
        self._require()
        potential = self.potential(time)
        samples = {}
        for plot in self.ir.tensor_plots:
            if plot.fn_name in self.evaluator.unbound:
                warnings.warn(f"Skipping tensor field {plot.fn_name}: {self.evaluator.unbound[plot.fn_name]}")
                continue
            tensor_fn = partial(self.evaluator.tensor_function(plot.fn_name), **frame_values(self.ir, time))
            samples[plot.fn_name] = sample_tensor_field(tensor_fn,
                                                        self.ir.x_range, self.ir.y_range,
                                                        potential=potential)
        return samples

    def spawn_anchors(self) -> List[Tuple[float, float]]:
        """Exceptional points inside the domain (empty: the integrator uses the domain center)"""
        inside = [(x, y) for x, y in EXCEPTIONAL_POINTS
                  if self.ir.x_range.contains(x) and self.ir.y_range.contains(y)]
        return inside

    def particle_integrator(self, time: Optional[float] = None, config: Optional[PhysicsConfig] = None,
                            seed: Optional[int] = None) -> ParticleIntegrator:
        self._require()
        config = config or PhysicsConfig.from_ir(self.ir)
        return ParticleIntegrator(self.potential(time), config, anchors=self.spawn_anchors(),
                                  cache=GradientCache(), seed=seed)

    def simulate_particles(self, steps: int = 100, count: Optional[int] = None, time: Optional[float] = None,
                           seed: Optional[int] = None, config: Optional[PhysicsConfig] = None) -> List[Particle]:
        """
        Run the particle system for a number of steps.

        With an animation the potential is re-bound every step, advancing
        the parameter by one animation step and wrapping at the end.
        """
        self._require()
        if count is None:
            count = self.ir.particles.count if self.ir.particles else DEFAULT_PARTICLE_COUNT
        integrator = self.particle_integrator(time, config, seed)
        particles = integrator.populate(count)

        frames = self.frames()
        offset = 0
        if self.ir.animation is not None and time is not None:
            offset = int(np.argmin([abs(f - time) for f in frames]))

        for i in range(steps):
            if self.ir.animation is not None and len(frames) > 1:
                integrator.set_potential(self.potential(frames[(offset + i) % len(frames)]))
            integrator.step(particles)
        return particles

    def flux_density(self, particles: Sequence[Particle], grid_size: int = 32) -> np.ndarray:
        self._require()
        density = FluxDensity(self.ir.x_range, self.ir.y_range, grid_size, smoothing=1.0)
        density.update(particles)
        return density.display_values(len(particles))

    def trace_streamlines(self, time: Optional[float] = None,
                          config: Optional[TracerConfig] = None) -> List[TraceSample]:
        self._require()
        return trace_streamlines(self.potential(time), self.ir.x_range, self.ir.y_range, config)

    def trace_field_lines(self, time: Optional[float] = None,
                          config: Optional[TracerConfig] = None) -> Dict[str, List[TraceSample]]:
        self._require()
        potential = self.potential(time)
        lines = {}
        for plot in self.ir.vector_plots:
            if plot.fn_name not in self.evaluator.unbound:
                lines[plot.fn_name] = trace_vector_field(self.evaluator, plot.fn_name, self.ir.x_range,
                                                         self.ir.y_range, config, height=potential,
                                                         values=frame_values(self.ir, time))
        return lines

    def extract_contours(self, time: Optional[float] = None, resolution: int = 120,
                         levels: Optional[Sequence[float]] = None) -> List[IsolineSet]:
        """Isolines of the surface at the CONTOUR LEVELS (or the given levels)"""
        self._require()
        if levels is None:
            levels = self.ir.contours.levels if self.ir.contours else ()
        potential = self.potential(time)
        return extract_contours(potential, self.ir.x_range, self.ir.y_range, levels,
                                resolution, height=potential)

    def geodesic(self, start: Tuple[float, float], end: Tuple[float, float], time: Optional[float] = None,
                 steps: int = 60, use_kdtree: bool = False) -> GeodesicPath:
        """Shortest path over the sampled surface between two (x, y) positions"""
        mesh = self.surface_mesh(time, steps)
        potential = self.potential(time)
        lift = lambda p: (p[0], p[1], float(potential(p[0], p[1])))
        return MeshGeodesics(mesh.vertices, mesh.faces, use_kdtree).path(lift(start), lift(end))

    def lyapunov_grid(self, time: Optional[float] = None, width: int = 32, height: int = 32,
                      config: Optional[LyapunovConfig] = None, normalize: bool = True) -> np.ndarray:
        self._require()
        return lyapunov_grid(self.potential(time), self.ir.x_range, self.ir.y_range,
                             width, height, config, normalize)

    def labels(self, time: Optional[float] = None) -> List[Tuple[str, Tuple[float, float, float]]]:
        self._require()
        values = frame_values(self.ir, time)
        return [self.evaluator.evaluate_label(label, **values) for label in self.ir.labels]

    def print_summary(self):
        """Print the compiled program"""
        if self.ir is None:
            print("No program compiled yet.")
            return

        ir = self.ir
        print(f"\n{'='*70}")
        print("G3D Program")
        print(f"{'='*70}\n")
        for axis in ("x", "y", "z"):
            r = ir.range_for(axis)
            print(f"RANGE {axis.upper()}: {r.min:g} .. {r.max:g}")
        print(f"COLOR MAP: {ir.color_map}")
        print()
        for name in ir.function_order:
            fn = ir.functions[name]
            status = "" if name not in self.evaluator.unbound else "  (unbound)"
            print(f"{fn.kind:>8}  {fn.signature} = {fn.body}{status}")
        print()
        for plot in ir.plots:
            print(f"PLOT {plot!r}")
        if ir.animation:
            a = ir.animation
            print(f"ANIMATE {a.parameter}: {a.start:g} -> {a.stop:g} step {a.step:g} ({a.frame_count} frames)")
        if ir.contours:
            print(f"CONTOUR LEVELS: {', '.join(f'{v:g}' for v in ir.contours.levels)}")
        if ir.particles:
            print(f"PARTICLES: {ir.particles.count}")
        print(f"\n{'='*70}\n")

    def get_info(self) -> dict:
        """Get comprehensive program information"""
        self._require()
        info = self.ir.summary()
        info.update({
            'function_order': list(self.ir.function_order),
            'unbound': dict(self.evaluator.unbound),
            'compilation_time': self.compilation_time,
        })
        return info


# ============================================================================
# EXAMPLE PROGRAMS
# ============================================================================

def example_exceptional_points() -> str:
    """Example: animated potential with four exceptional points"""
    return """
# Quantum exceptional point dynamics
SET RANGE X -8 TO 8
SET RANGE Y -8 TO 8
SET RANGE Z -4 TO 12
COLOR MAP plasma

DEF FNPI = 3.1415926535
DEF FNMANIFOLD(x,y) = EXP(-0.3*(x^2 + y^2)) * COS(SQRT(x^2 + y^2))

# Time-dependent coherence ripples
DEF FNPSI1(x,y,t) = (x^2 - y^2) * EXP(-0.15*(x^2 + y^2)) * SIN(2*FNPI*SQRT(x^2 + y^2)/8 - t)
DEF FNPSI2(x,y,t) = 2*x*y * EXP(-0.15*(x^2 + y^2)) * COS(2*FNPI*SQRT(x^2 + y^2)/8 - t)

DEF FNEP1_RESIDUE = 2.5
DEF FNEP2_RESIDUE = 3.0
DEF FNEP3_RESIDUE = 2.0
DEF FNEP4_RESIDUE = 2.8
DEF FNEP(x,y) = FNEP1_RESIDUE/((x-3)^2+(y-2)^2+0.3) + FNEP2_RESIDUE/((x+2)^2+(y-4)^2+0.3) + \\
                FNEP3_RESIDUE/((x+4)^2+(y+3)^2+0.3) + FNEP4_RESIDUE/((x-2)^2+(y+4)^2+0.3)

DEF FNSURFACE(x,y,t) = FNMANIFOLD(x,y) + 0.4*FNPSI1(x,y,t) + 0.4*FNPSI2(x,y,t) + 0.8*FNEP(x,y)

DEF VEC_FLOW(x, y) = [-y * 0.3, x * 0.3, 0.5 * SIN(x/2)]
DEF TENSOR_SHEAR(x, y) = [[1, 0.5*SIN(y/2)], [0.5*SIN(y/2), 1]]

LABEL "EP1" AT 3, 2, FNSURFACE(3,2,t) + 0.5
LABEL "EP2" AT -2, 4, FNSURFACE(-2,4,t) + 0.5
LABEL "EP3" AT -4, -3, FNSURFACE(-4,-3,t) + 0.5
LABEL "EP4" AT 2, -4, FNSURFACE(2,-4,t) + 0.5

PARTICLES 500
ANIMATE t FROM 0 TO 6.28 STEP 0.05

PLOT3D FNSURFACE(x,y,t)
PLOT_VECFIELD VEC_FLOW
PLOT_TENSOR TENSOR_SHEAR AS GLYPH 'ELLIPSOID'
"""


def example_saddle() -> str:
    """Example: hyperbolic saddle with level sets"""
    return """
SET RANGE X -2 TO 2
SET RANGE Y -2 TO 2
COLOR MAP viridis
DEF FNSADDLE(x,y) = x^2 - y^2
PLOT3D FNSADDLE(x,y)
CONTOUR LEVELS -1, -0.5, 0, 0.5, 1
LABEL "saddle " + STR(FNSADDLE(0,0)) AT 0, 0, 0.5
"""


def example_double_well() -> str:
    """Example: double-well potential, two basins of attraction"""
    return """
SET RANGE X -2 TO 2
SET RANGE Y -1.5 TO 1.5
SET RANGE Z -1 TO 3
COLOR MAP inferno
DEF FNWELL(x,y) = (x^2 - 1)^2 + 0.5*y^2
PLOT3D FNWELL(x,y)
CONTOUR LEVELS 0.1, 0.5, 1
PARTICLES 200
"""


def example_ripple() -> str:
    """Example: travelling radial wave"""
    return """
SET RANGE X -6 TO 6
SET RANGE Y -6 TO 6
COLOR MAP cool
DEF FNR(x,y) = SQRT(x^2 + y^2)
DEF FNWAVE(x,y,p) = SIN(FNR(x,y) - p) * EXP(-0.1*FNR(x,y))
ANIMATE p FROM 0 TO 2*PI STEP PI/16
PLOT3D FNWAVE(x,y,p)
LABEL "phase = " + TEXT(p) AT 0, 0, 1.5
"""


def example_vortex() -> str:
    """Example: vector and tensor fields without an explicit surface"""
    return """
SET RANGE X -3 TO 3
SET RANGE Y -3 TO 3
DEF VEC_VORTEX(x,y) = [-y, x, 0]
DEF TENSOR_STRAIN(x,y) = [
  [1 + x^2, x*y],
  [x*y, 1 + y^2]]
PLOT_VECFIELD VEC_VORTEX GRID 12
PLOT_TENSOR TENSOR_STRAIN AS GLYPH 'ELLIPSOID'
"""


EXAMPLES = {
    'exceptional_points': example_exceptional_points,
    'saddle': example_saddle,
    'double_well': example_double_well,
    'ripple': example_ripple,
    'vortex': example_vortex,
}


def run_example(example_name: str = "saddle", time: Optional[float] = None, verbose: bool = True) -> dict:
    """
    Compile a built-in example program

    Args:
        example_name: Key of EXAMPLES
        time: Animation time used for the potential preview
        verbose: Print the compiled program

    Returns:
        Dictionary with compiler and compilation result
    """
    if example_name not in EXAMPLES:
        raise ValueError(f"Unknown example: {example_name}. Choose from {list(EXAMPLES.keys())}")

    compiler = G3DCompiler()
    result = compiler.compile_dsl(EXAMPLES[example_name]())

    if not result['success']:
        if verbose:
            print(f"Compilation failed: {result.get('error', 'Unknown error')}")
        return {'compiler': compiler, 'result': result}

    if verbose:
        print(f"\n{'='*70}")
        print(f"Successfully compiled: {example_name}")
        print(f"Plots: {', '.join(result['plots'])}")
        print(f"Compilation time: {result['compilation_time']:.4f} seconds")
        print(f"{'='*70}\n")
        compiler.print_summary()

    return {'compiler': compiler, 'result': result}
