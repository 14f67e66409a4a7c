"""
G3D - a declarative language for mathematical 3D fields, with the
numerical engines that make its programs renderable:

    from g3d import G3DCompiler
    compiler = G3DCompiler()
    result = compiler.compile_dsl(source)
    if result['success']:
        lines = compiler.trace_streamlines()
"""

__version__ = "0.3.0"

from .compiler import EXAMPLES, G3DCompiler, run_example
from .contours import IsolineSet, extract_contours, extract_isolines, marching_squares
from .errors import CircularDefinitionError, EvaluationError, G3DSyntaxError
from .evaluator import ExpressionEvaluator
from .fields import GradientCache, central_gradient, laplacian, safe_field, sample_surface
from .geodesic import GeodesicPath, MeshGeodesics, geodesic_path
from .ir import GraphIR, NamedFunction, Particle, Range, TraceSample
from .lyapunov import LyapunovConfig, lyapunov_exponent, lyapunov_grid
from .parser import G3DParser, parse_g3d, preprocess, resolve_function_order
from .particles import ParticleIntegrator, PhysicsConfig
from .streamlines import StreamlineTracer, TracerConfig, trace_streamlines

__all__ = [
    'G3DCompiler',
    'EXAMPLES',
    'run_example',
    'G3DParser',
    'parse_g3d',
    'preprocess',
    'resolve_function_order',
    'ExpressionEvaluator',
    'G3DSyntaxError',
    'EvaluationError',
    'CircularDefinitionError',
    'GraphIR',
    'NamedFunction',
    'Range',
    'Particle',
    'TraceSample',
    'GradientCache',
    'central_gradient',
    'laplacian',
    'safe_field',
    'sample_surface',
    'ParticleIntegrator',
    'PhysicsConfig',
    'StreamlineTracer',
    'TracerConfig',
    'trace_streamlines',
    'IsolineSet',
    'marching_squares',
    'extract_isolines',
    'extract_contours',
    'MeshGeodesics',
    'GeodesicPath',
    'geodesic_path',
    'LyapunovConfig',
    'lyapunov_exponent',
    'lyapunov_grid',
]
