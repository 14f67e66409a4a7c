"""
Intermediate representation produced by the G3D parser.

Every type here is frozen: a GraphIR is built once per successful parse and
consumers only read it.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Deque, Dict, Iterator, Mapping, Optional, Tuple, Union

import numpy as np

VALID_COLOR_MAPS = ("viridis", "plasma", "inferno", "magma", "hot", "cool", "default")
GLYPH_KINDS = ("ELLIPSOID",)
CONSTANT_PREFIXES = ("FN", "VEC_", "TENSOR_")

MAX_PARTICLES = 5000
MAX_GRID_SIZE = 200
DEFAULT_VECTOR_GRID = 15

# ============================================================================
# PROGRAM DATA MODEL
# ============================================================================

@dataclass(frozen=True)
class Range:
    """Real bounds for one axis; min < max always holds."""
    min: float
    max: float

    def __post_init__(self):
        if not (self.min < self.max):
            raise ValueError(f"Range requires min < max, got {self.min} >= {self.max}")

    @property
    def span(self) -> float:
        return self.max - self.min

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def clamp(self, value: float) -> float:
        return min(self.max, max(self.min, value))

    def linspace(self, count: int) -> np.ndarray:
        return np.linspace(self.min, self.max, count)

    def __repr__(self):
        return f"Range({self.min} .. {self.max})"


DEFAULT_RANGE = Range(-1.0, 1.0)


@dataclass(frozen=True)
class NamedFunction:
    name: str
    params: Tuple[str, ...]
    body: str
    line: int = 0

    @property
    def kind(self) -> str:
        upper = self.name.upper()
        if upper.startswith("VEC_"):
            return "vector"
        if upper.startswith("TENSOR_"):
            return "tensor"
        if not self.params:
            return "constant"
        return "scalar"

    @property
    def signature(self) -> str:
        if not self.params:
            return self.name
        return f"{self.name}({', '.join(self.params)})"

    def __repr__(self):
        return f"Define({self.signature} = {self.body})"


@dataclass(frozen=True)
class SurfacePlot:
    expr: str
    source: str = ""
    implicit: bool = False
    type: str = field(default="surface", init=False)

    def __repr__(self):
        return f"Surface({self.expr})"


@dataclass(frozen=True)
class VectorPlot:
    fn_name: str
    grid_size: int = DEFAULT_VECTOR_GRID
    type: str = field(default="vector", init=False)

    def __repr__(self):
        return f"VectorField({self.fn_name}, grid={self.grid_size})"


@dataclass(frozen=True)
class TensorPlot:
    fn_name: str
    glyph_kind: str = "ELLIPSOID"
    type: str = field(default="tensor", init=False)

    def __repr__(self):
        return f"TensorField({self.fn_name} as {self.glyph_kind})"


Plot = Union[SurfacePlot, VectorPlot, TensorPlot]


@dataclass(frozen=True)
class Animation:
    parameter: str
    start: float
    stop: float
    step: float

    def frames(self) -> Iterator[float]:
        """Parameter values from start to stop inclusive"""
        count = int(math.floor(abs(self.stop - self.start) / self.step + 1e-9))
        direction = 1.0 if self.stop >= self.start else -1.0
        for i in range(count + 1):
            yield self.start + direction * i * self.step

    @property
    def frame_count(self) -> int:
        return int(math.floor(abs(self.stop - self.start) / self.step + 1e-9)) + 1


@dataclass(frozen=True)
class Contour:
    levels: Tuple[float, ...]


@dataclass(frozen=True)
class Label:
    text_expr: str
    position_expr: Tuple[str, str, str]


@dataclass(frozen=True)
class ParticleConfig:
    count: int


@dataclass(frozen=True)
class GraphIR:
    """Validated G3D program"""
    ranges: Mapping[str, Range]
    functions: Mapping[str, NamedFunction]
    plots: Tuple[Plot, ...]
    labels: Tuple[Label, ...] = ()
    animation: Optional[Animation] = None
    contours: Optional[Contour] = None
    particles: Optional[ParticleConfig] = None
    color_map: str = "default"
    function_order: Tuple[str, ...] = ()
    version: int = 1

    def __post_init__(self):
        # Read-only views over whatever mappings the builder handed in
        object.__setattr__(self, "ranges", MappingProxyType(dict(self.ranges)))
        object.__setattr__(self, "functions", MappingProxyType(dict(self.functions)))

    def range_for(self, axis: str) -> Range:
        return self.ranges[axis.lower()]

    @property
    def x_range(self) -> Range:
        return self.ranges["x"]

    @property
    def y_range(self) -> Range:
        return self.ranges["y"]

    @property
    def z_range(self) -> Range:
        return self.ranges["z"]

    @property
    def surface(self) -> SurfacePlot:
        """The first surface plot; the parser guarantees there is one."""
        return next(p for p in self.plots if isinstance(p, SurfacePlot))

    @property
    def vector_plots(self) -> Tuple[VectorPlot, ...]:
        return tuple(p for p in self.plots if isinstance(p, VectorPlot))

    @property
    def tensor_plots(self) -> Tuple[TensorPlot, ...]:
        return tuple(p for p in self.plots if isinstance(p, TensorPlot))

    def summary(self) -> Dict[str, object]:
        return {
            'version': self.version,
            'ranges': {axis: (r.min, r.max) for axis, r in self.ranges.items()},
            'functions': list(self.functions),
            'plots': [repr(p) for p in self.plots],
            'color_map': self.color_map,
            'animation': None if self.animation is None else self.animation.parameter,
            'contour_levels': [] if self.contours is None else list(self.contours.levels),
            'labels': len(self.labels),
            'particles': 0 if self.particles is None else self.particles.count,
        }


# ============================================================================
# ALGORITHM-OWNED STATE AND OUTPUTS
# ============================================================================

@dataclass
class Particle:
    """Point mass advanced by the particle integrator"""
    id: int
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    trail: Deque[Tuple[float, float, float]] = field(default_factory=deque)

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.vx, self.vy))

    def __repr__(self):
        return f"Particle#{self.id}(({self.x:.3f}, {self.y:.3f}) v=({self.vx:.3f}, {self.vy:.3f}))"


@dataclass(frozen=True)
class TraceSample:
    """One traced curve: 3D points with a magnitude and an auxiliary scalar per point."""
    points: np.ndarray
    magnitudes: np.ndarray
    aux: np.ndarray

    def __post_init__(self):
        for name in ("points", "magnitudes", "aux"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self):
        return len(self.points)

    @property
    def length(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return float(np.sum(np.linalg.norm(np.diff(self.points, axis=0), axis=1)))
