"""
Field sampling utilities shared by the numerical algorithms.

Potentials are plain callables phi(x, y) that accept floats or numpy
arrays. Anything coming from user expressions is wrapped with safe_field so
evaluation failures and non-finite values read as 0.
"""

import math
import warnings
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from .colormaps import heat_colors, map_values
from .errors import EvaluationError
from .ir import GraphIR, Range

Potential = Callable[..., object]

DEFAULT_H = 0.01
LAPLACIAN_H = 0.05
VECTOR_EPSILON = 1e-6

# ============================================================================
# SAFE EVALUATION
# ============================================================================

def safe_value(value, default: float = 0.0):
    """Replace non-finite entries with `default`; floats stay floats."""
    if np.ndim(value) == 0:
        try:
            value = float(value)
        except (TypeError, ValueError):
            return default
        return value if math.isfinite(value) else default
    arr = np.asarray(value, dtype=float)
    return np.where(np.isfinite(arr), arr, default)


def safe_field(fn: Potential, default: float = 0.0) -> Potential:
    """
    Wrap a field so that it never raises and never returns NaN/inf.

    The wrapped callable is tried on whole arrays first; if that fails the
    inputs are evaluated point by point so one bad sample does not blank the
    whole grid.
    """
    def scalar_call(*args):
        try:
            return safe_value(fn(*args), default)
        except (EvaluationError, ArithmeticError, TypeError, ValueError):
            return default

    def wrapper(*args):
        try:
            return safe_value(fn(*args), default)
        except (EvaluationError, ArithmeticError, TypeError, ValueError):
            if all(np.ndim(a) == 0 for a in args):
                return default
            return np.vectorize(scalar_call, otypes=[float])(*args)

    wrapper.__wrapped__ = fn
    return wrapper


def zero_field(*args):
    if all(np.ndim(a) == 0 for a in args):
        return 0.0
    return np.zeros(np.broadcast_shapes(*(np.shape(a) for a in args)))


def frame_values(ir: GraphIR, time: Optional[float] = None) -> Dict[str, float]:
    """Animation parameter binding for one frame: `time`, or the animation start"""
    if ir.animation is None:
        return {}
    return {ir.animation.parameter: ir.animation.start if time is None else float(time)}


def potential_from_ir(ir: GraphIR, evaluator, time: Optional[float] = None) -> Potential:
    """
    Safe potential phi(x, y) of the program's surface plot at one frame.

    The animation parameter (`time`, or the animation start when None) is
    bound into the returned callable; the evaluator's variables are left
    untouched, so potentials taken for different frames never interfere.
    """
    values = frame_values(ir, time)
    try:
        surface = evaluator.scalar_field(ir.surface.expr)
    except EvaluationError as e:
        warnings.warn(f"Surface expression '{ir.surface.expr}' is not evaluable: {e}")
        return zero_field
    return safe_field(lambda x, y: surface(x, y, **values))

# ============================================================================
# DIFFERENTIAL OPERATORS
# ============================================================================

def central_gradient(fn: Potential, x, y, h: float = DEFAULT_H) -> Tuple[object, object]:
    """Symmetric central-difference gradient (dphi/dx, dphi/dy)"""
    dx = (fn(x + h, y) - fn(x - h, y)) / (2 * h)
    dy = (fn(x, y + h) - fn(x, y - h)) / (2 * h)
    return dx, dy


def laplacian(fn: Potential, x, y, h: float = LAPLACIAN_H):
    """Trace of the finite-difference Hessian"""
    center = fn(x, y)
    return (fn(x + h, y) + fn(x - h, y) + fn(x, y + h) + fn(x, y - h) - 4 * center) / (h * h)


class GradientCache:
    """
    Memo of central-difference gradients keyed by rounded coordinates.

    Owned by one consumer. When full, the whole cache is cleared before the
    next insert; call clear() whenever the underlying potential changes.
    """

    def __init__(self, capacity: int = 500, precision: int = 2):
        self.capacity = capacity
        self.precision = precision
        self._entries: Dict[Tuple[float, float], Tuple[float, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def key(self, x: float, y: float) -> Tuple[float, float]:
        return (round(x, self.precision), round(y, self.precision))

    def gradient(self, fn: Potential, x: float, y: float, h: float = DEFAULT_H) -> Tuple[float, float]:
        key = self.key(x, y)
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        if len(self._entries) >= self.capacity:
            self._entries.clear()
        gx, gy = central_gradient(fn, x, y, h)
        value = (float(gx), float(gy))
        self._entries[key] = value
        return value

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, point) -> bool:
        return self.key(*point) in self._entries

# ============================================================================
# SURFACE / VECTOR / TENSOR SAMPLING
# ============================================================================

def grid(x_range: Range, y_range: Range, nx: int, ny: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Meshgrid of nx by ny points spanning both ranges, indexed [iy, ix]"""
    ny = nx if ny is None else ny
    return np.meshgrid(x_range.linspace(nx), y_range.linspace(ny))


@dataclass
class SurfaceMesh:
    vertices: np.ndarray        # (N, 3) x, y, phi
    faces: np.ndarray           # (M, 3) vertex indices
    gradient_magnitudes: np.ndarray
    steps: int

    @property
    def heights(self) -> np.ndarray:
        return self.vertices[:, 2]

    def __repr__(self):
        return f"SurfaceMesh({len(self.vertices)} vertices, {len(self.faces)} faces)"


def sample_surface(potential: Potential, x_range: Range, y_range: Range, steps: int = 60,
                   h: float = DEFAULT_H) -> SurfaceMesh:
    """
    Triangulated height field of phi over the ranges.

    Vertex (ix, iy) has index iy * (steps + 1) + ix; each grid cell becomes
    the two triangles (a, c, b) and (b, c, d).
    """
    X, Y = grid(x_range, y_range, steps + 1)
    Z = safe_value(potential(X, Y))
    gx, gy = central_gradient(potential, X, Y, h)
    magnitudes = safe_value(np.hypot(gx, gy))

    vertices = np.column_stack([X.ravel(), Y.ravel(), np.broadcast_to(Z, X.shape).ravel()])

    row = steps + 1
    ix, iy = np.meshgrid(np.arange(steps), np.arange(steps))
    a = (iy * row + ix).ravel()
    b = a + 1
    c = a + row
    d = c + 1
    faces = np.empty((2 * a.size, 3), dtype=int)
    faces[0::2] = np.column_stack([a, c, b])
    faces[1::2] = np.column_stack([b, c, d])

    return SurfaceMesh(vertices, faces, np.broadcast_to(magnitudes, X.shape).ravel(), steps)


def surface_colors(mesh: SurfaceMesh, color_map: str = "default", z_range: Optional[Range] = None) -> np.ndarray:
    """Per-vertex RGB by height, normalized to z_range (or the data extent)"""
    if z_range is None:
        return map_values(mesh.heights, color_map)
    return map_values(mesh.heights, color_map, z_range.min, z_range.max)


@dataclass
class VectorFieldSample:
    origins: np.ndarray      # (K, 3)
    vectors: np.ndarray      # (K, 3)
    magnitudes: np.ndarray   # (K,)

    def __len__(self):
        return len(self.origins)

    @property
    def colors(self) -> np.ndarray:
        """Heat ramp by magnitude relative to the longest arrow"""
        top = self.magnitudes.max() if len(self.magnitudes) else 0.0
        return heat_colors(self.magnitudes / top if top > 0 else self.magnitudes)


def sample_vector_field(vector_fn, x_range: Range, y_range: Range, grid_size: int = 15,
                        potential: Optional[Potential] = None) -> VectorFieldSample:
    """
    Arrows of a VEC_ function on a grid_size x grid_size lattice.

    Arrows sit on the surface when a potential is given. Samples that are
    non-finite or shorter than VECTOR_EPSILON are skipped.
    """
    X, Y = grid(x_range, y_range, grid_size)
    try:
        components = [np.broadcast_to(np.asarray(c, dtype=float), X.shape) for c in vector_fn(X, Y)]
    except (EvaluationError, ArithmeticError, TypeError, ValueError) as e:
        warnings.warn(f"Vector field could not be sampled: {e}")
        empty = np.zeros((0, 3))
        return VectorFieldSample(empty, empty, np.zeros(0))

    vectors = np.stack([c.ravel() for c in components], axis=1)
    magnitudes = np.linalg.norm(vectors, axis=1)
    keep = np.all(np.isfinite(vectors), axis=1) & (magnitudes >= VECTOR_EPSILON)

    Z = np.zeros_like(X) if potential is None else np.broadcast_to(safe_value(potential(X, Y)), X.shape)
    origins = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])
    return VectorFieldSample(origins[keep], vectors[keep], magnitudes[keep])


@dataclass
class TensorGlyphSample:
    centers: np.ndarray       # (K, 3)
    eigenvalues: np.ndarray   # (K, 2)
    eigenvectors: np.ndarray  # (K, 2, 2), columns are eigenvectors
    intensity: np.ndarray     # (K,) max |eigenvalue| normalized to [0, 1]

    def __len__(self):
        return len(self.centers)

    @property
    def colors(self) -> np.ndarray:
        return heat_colors(self.intensity)


def sample_tensor_field(tensor_fn, x_range: Range, y_range: Range, grid_size: int = 20,
                        potential: Optional[Potential] = None) -> TensorGlyphSample:
    """
    Eigen-decomposed 2x2 tensors on a lattice, one glyph per finite sample.

    Samples with complex eigenvalues cannot be drawn as ellipsoids and are
    dropped along with non-finite ones.
    """
    X, Y = grid(x_range, y_range, grid_size)
    try:
        (a, b), (c, d) = tensor_fn(X, Y)
    except (EvaluationError, ArithmeticError, TypeError, ValueError) as e:
        warnings.warn(f"Tensor field could not be sampled: {e}")
        return TensorGlyphSample(np.zeros((0, 3)), np.zeros((0, 2)), np.zeros((0, 2, 2)), np.zeros(0))

    cells = [np.broadcast_to(np.asarray(v, dtype=float), X.shape).ravel() for v in (a, b, c, d)]
    matrices = np.stack(cells, axis=1).reshape(-1, 2, 2)
    finite = np.all(np.isfinite(matrices.reshape(-1, 4)), axis=1)

    eigenvalues = np.zeros((len(matrices), 2))
    eigenvectors = np.zeros((len(matrices), 2, 2))
    real = np.zeros(len(matrices), dtype=bool)
    if finite.any():
        values, vectors = np.linalg.eig(matrices[finite])
        is_real = np.all(np.abs(values.imag) < 1e-12, axis=1)
        idx = np.flatnonzero(finite)
        eigenvalues[idx] = values.real
        eigenvectors[idx] = vectors.real
        real[idx] = is_real

    keep = finite & real
    Z = np.zeros_like(X) if potential is None else np.broadcast_to(safe_value(potential(X, Y)), X.shape)
    centers = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])[keep]

    peak = np.max(np.abs(eigenvalues[keep]), axis=1) if keep.any() else np.zeros(0)
    top = peak.max() if peak.size else 0.0
    intensity = peak / top if top > 0 else np.zeros_like(peak)
    return TensorGlyphSample(centers, eigenvalues[keep], eigenvectors[keep], intensity)
