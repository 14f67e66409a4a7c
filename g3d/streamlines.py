"""
Streamline / field-line tracer.

Curves are integrated with fixed-step RK4 through a planar flow F(x, y).
For a potential the flow is the descent direction -grad(phi); for a VEC_
definition it is the (x, y) part of the vector field.
"""

import math
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .fields import DEFAULT_H, Potential, central_gradient, safe_field, safe_value
from .ir import Range, TraceSample

Flow = Callable[[float, float], Tuple[float, float]]

SEED_STRATEGIES = ("random", "grid", "critical-point", "boundary")


@dataclass
class TracerConfig:
    dt: float = 0.05
    max_steps: int = 500
    epsilon: float = 1e-3        # stop when the step direction vanishes
    min_points: int = 10         # shorter traces are dropped
    seed_count: int = 30
    strategy: str = "random"
    seed: Optional[int] = None   # RNG seed for random seeding
    h: float = DEFAULT_H
    scan_resolution: int = 40    # grid used to look for critical points
    critical_tolerance: float = 0.05
    ring_radius: float = 0.15
    ring_points: int = 8

# ============================================================================
# FLOWS
# ============================================================================

def gradient_flow(potential: Potential, h: float = DEFAULT_H) -> Flow:
    """Steepest-descent flow of phi"""
    def flow(x, y):
        gx, gy = central_gradient(potential, x, y, h)
        return -float(gx), -float(gy)
    return flow


def vector_flow(evaluator, name: str, values: Optional[Mapping[str, float]] = None) -> Flow:
    """
    Planar part of a VEC_ definition; extra parameters beyond (x, y) get 0.

    `values` binds free variables (the animation parameter) for every call.
    """
    values = dict(values or {})
    vector_fn = evaluator.vector_function(name)
    extra = max(0, len(evaluator.functions[name].params) - 2)
    fx = safe_field(lambda x, y: vector_fn.components[0](x, y, *([0.0] * extra), **values))
    fy = safe_field(lambda x, y: vector_fn.components[1](x, y, *([0.0] * extra), **values))

    def flow(x, y):
        return float(fx(x, y)), float(fy(x, y))
    return flow

# ============================================================================
# SEEDING
# ============================================================================

def random_seeds(x_range: Range, y_range: Range, count: int, rng: np.random.Generator) -> np.ndarray:
    xs = x_range.min + rng.random(count) * x_range.span
    ys = y_range.min + rng.random(count) * y_range.span
    return np.column_stack([xs, ys])


def grid_seeds(x_range: Range, y_range: Range, count: int) -> np.ndarray:
    """Cell centers of an n x n lattice, n = ceil(sqrt(count))"""
    n = max(1, int(math.ceil(math.sqrt(count))))
    xs = x_range.min + (np.arange(n) + 0.5) * x_range.span / n
    ys = y_range.min + (np.arange(n) + 0.5) * y_range.span / n
    X, Y = np.meshgrid(xs, ys)
    return np.column_stack([X.ravel(), Y.ravel()])


def boundary_seeds(x_range: Range, y_range: Range, count: int) -> np.ndarray:
    """Evenly spaced points along the domain perimeter, counter-clockwise from (xmin, ymin)"""
    perimeter = 2 * (x_range.span + y_range.span)
    seeds = []
    for s in np.arange(count) * perimeter / max(count, 1):
        if s < x_range.span:
            seeds.append((x_range.min + s, y_range.min))
            continue
        s -= x_range.span
        if s < y_range.span:
            seeds.append((x_range.max, y_range.min + s))
            continue
        s -= y_range.span
        if s < x_range.span:
            seeds.append((x_range.max - s, y_range.max))
            continue
        s -= x_range.span
        seeds.append((x_range.min, y_range.max - s))
    return np.array(seeds, dtype=float).reshape(-1, 2)


def find_critical_points(flow: Flow, x_range: Range, y_range: Range, resolution: int = 40,
                         tolerance: float = 0.05) -> np.ndarray:
    """
    Grid points where |F| is below tolerance and a local minimum of its
    3x3 neighbourhood.
    """
    xs = x_range.linspace(resolution)
    ys = y_range.linspace(resolution)
    magnitude = np.empty((resolution, resolution))
    for j, y in enumerate(ys):
        for i, x in enumerate(xs):
            fx, fy = flow(x, y)
            magnitude[j, i] = safe_value(math.hypot(fx, fy), math.inf)

    points = []
    for j in range(resolution):
        for i in range(resolution):
            m = magnitude[j, i]
            if m >= tolerance:
                continue
            neighbourhood = magnitude[max(0, j - 1):j + 2, max(0, i - 1):i + 2]
            if m <= neighbourhood.min():
                points.append((xs[i], ys[j]))
    return np.array(points, dtype=float).reshape(-1, 2)


def critical_point_seeds(flow: Flow, x_range: Range, y_range: Range, config: TracerConfig) -> np.ndarray:
    """A ring of seeds around every critical point, clipped to the domain"""
    centers = find_critical_points(flow, x_range, y_range, config.scan_resolution, config.critical_tolerance)
    angles = np.linspace(0.0, 2 * math.pi, config.ring_points, endpoint=False)
    seeds = []
    for cx, cy in centers:
        for a in angles:
            x = cx + config.ring_radius * math.cos(a)
            y = cy + config.ring_radius * math.sin(a)
            if x_range.contains(x) and y_range.contains(y):
                seeds.append((x, y))
    return np.array(seeds, dtype=float).reshape(-1, 2)

# ============================================================================
# TRACING
# ============================================================================

def discrete_curvature(points: np.ndarray) -> np.ndarray:
    """Turning angle per unit length at each interior vertex; endpoints get 0."""
    points = np.asarray(points, dtype=float)
    curvature = np.zeros(len(points))
    if len(points) < 3:
        return curvature
    t1 = points[1:-1] - points[:-2]
    t2 = points[2:] - points[1:-1]
    n1 = np.linalg.norm(t1, axis=1)
    n2 = np.linalg.norm(t2, axis=1)
    cross = np.linalg.norm(np.cross(t1, t2), axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        sin_turn = cross / (n1 * n2)
        interior = sin_turn / (0.5 * (n1 + n2))
    curvature[1:-1] = np.where(np.isfinite(interior), interior, 0.0)
    return curvature


class StreamlineTracer:
    """
    RK4 tracer for one flow over a rectangular domain.

    Args:
        flow: F(x, y) -> (fx, fy), the direction of travel
        x_range, y_range: Domain; a trace stops when it leaves it
        config: Integration and seeding constants
        height: Optional phi(x, y) used as the z coordinate of samples
    """

    def __init__(self, flow: Flow, x_range: Range, y_range: Range,
                 config: Optional[TracerConfig] = None, height: Optional[Potential] = None):
        self.flow = flow
        self.x_range = x_range
        self.y_range = y_range
        self.config = config or TracerConfig()
        self.height = height
        self.rng = np.random.default_rng(self.config.seed)

    def _z(self, x, y) -> float:
        if self.height is None:
            return 0.0
        return safe_value(self.height(x, y))

    def trace(self, x0: float, y0: float) -> TraceSample:
        """Integrate one curve from (x0, y0); no length filtering."""
        cfg = self.config
        dt = cfg.dt
        x, y = float(x0), float(y0)
        points, magnitudes = [], []

        for _ in range(cfg.max_steps):
            k1 = self.flow(x, y)
            points.append((x, y, self._z(x, y)))
            magnitudes.append(math.hypot(*k1))

            k2 = self.flow(x + 0.5 * dt * k1[0], y + 0.5 * dt * k1[1])
            k3 = self.flow(x + 0.5 * dt * k2[0], y + 0.5 * dt * k2[1])
            k4 = self.flow(x + dt * k3[0], y + dt * k3[1])
            dx = (k1[0] + 2 * k2[0] + 2 * k3[0] + k4[0]) / 6
            dy = (k1[1] + 2 * k2[1] + 2 * k3[1] + k4[1]) / 6
            x += dt * dx
            y += dt * dy

            if not (math.isfinite(x) and math.isfinite(y)):
                break
            if not (self.x_range.contains(x) and self.y_range.contains(y)):
                break
            if math.hypot(dx, dy) < cfg.epsilon:
                break

        pts = np.array(points, dtype=float).reshape(-1, 3)
        return TraceSample(pts, np.array(magnitudes, dtype=float), discrete_curvature(pts))

    def seeds(self, strategy: Optional[str] = None, count: Optional[int] = None) -> np.ndarray:
        strategy = strategy or self.config.strategy
        count = self.config.seed_count if count is None else count
        if strategy == "random":
            return random_seeds(self.x_range, self.y_range, count, self.rng)
        if strategy == "grid":
            return grid_seeds(self.x_range, self.y_range, count)
        if strategy == "boundary":
            return boundary_seeds(self.x_range, self.y_range, count)
        if strategy == "critical-point":
            return critical_point_seeds(self.flow, self.x_range, self.y_range, self.config)
        raise ValueError(f"Unknown seed strategy '{strategy}'. Valid strategies are: {', '.join(SEED_STRATEGIES)}")

    def trace_all(self, seeds: Optional[Sequence[Tuple[float, float]]] = None,
                  strategy: Optional[str] = None) -> List[TraceSample]:
        """Trace from every seed and keep curves with at least min_points samples"""
        if seeds is None:
            seeds = self.seeds(strategy)
        traces = []
        for x0, y0 in seeds:
            sample = self.trace(x0, y0)
            if len(sample) >= self.config.min_points:
                traces.append(sample)
        return traces


def trace_streamlines(potential: Potential, x_range: Range, y_range: Range,
                      config: Optional[TracerConfig] = None,
                      seeds: Optional[Sequence[Tuple[float, float]]] = None) -> List[TraceSample]:
    """Descent streamlines of a potential, sampled on its surface"""
    config = config or TracerConfig()
    tracer = StreamlineTracer(gradient_flow(potential, config.h), x_range, y_range, config, height=potential)
    return tracer.trace_all(seeds)


def trace_vector_field(evaluator, name: str, x_range: Range, y_range: Range,
                       config: Optional[TracerConfig] = None, height: Optional[Potential] = None,
                       seeds: Optional[Sequence[Tuple[float, float]]] = None,
                       values: Optional[Mapping[str, float]] = None) -> List[TraceSample]:
    """Field lines of a VEC_ definition"""
    tracer = StreamlineTracer(vector_flow(evaluator, name, values), x_range, y_range, config, height=height)
    return tracer.trace_all(seeds)
