"""
Isoline extraction with Marching Squares.

The field is sampled on a (resolution + 1)^2 lattice. Each cell gets a case
index with one bit per corner below the threshold (BL=1, BR=2, TR=4, TL=8),
and crossings are placed on cell edges (0 bottom, 1 right, 2 top, 3 left)
by linear interpolation. Saddle cases 5 and 10 always emit both segments,
so they can connect the wrong pair of crossings.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .fields import Potential, central_gradient, safe_value
from .ir import Range, TraceSample

GRID_RESOLUTION = 120

CASE_SEGMENTS = {
    1: ((3, 0),),
    2: ((0, 1),),
    3: ((3, 1),),
    4: ((1, 2),),
    5: ((0, 1), (2, 3)),
    6: ((0, 2),),
    7: ((3, 2),),
    8: ((2, 3),),
    9: ((0, 2),),
    10: ((0, 3), (1, 2)),
    11: ((1, 2),),
    12: ((3, 1),),
    13: ((0, 1),),
    14: ((3, 0),),
}


def evaluate_grid(field: Potential, x_range: Range, y_range: Range,
                  resolution: int = GRID_RESOLUTION) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Returns xs, ys and the sample array indexed [j, i] (j along y)"""
    xs = x_range.linspace(resolution + 1)
    ys = y_range.linspace(resolution + 1)
    X, Y = np.meshgrid(xs, ys)
    values = np.broadcast_to(safe_value(field(X, Y)), X.shape)
    return xs, ys, np.array(values, dtype=float)


def interpolate(v0: float, v1: float, t0: float, t1: float, level: float) -> float:
    """Position along [t0, t1] where the edge value reaches `level`"""
    if v1 == v0:
        return 0.5 * (t0 + t1)
    return t0 + (t1 - t0) * ((level - v0) / (v1 - v0))


def case_indices(values: np.ndarray, level: float) -> np.ndarray:
    below = values < level
    return (below[:-1, :-1] * 1
            + below[:-1, 1:] * 2
            + below[1:, 1:] * 4
            + below[1:, :-1] * 8)


def marching_squares(values: np.ndarray, xs: np.ndarray, ys: np.ndarray, level: float) -> np.ndarray:
    """
    Isoline segments of a sampled field.

    Args:
        values: Samples indexed [j, i]
        xs, ys: Lattice coordinates
        level: Threshold

    Returns:
        (K, 2, 2) array of segment endpoints in the xy plane
    """
    cases = case_indices(values, level)
    segments = []
    for j, i in zip(*np.nonzero((cases > 0) & (cases < 15))):
        v0 = values[j, i]
        v1 = values[j, i + 1]
        v2 = values[j + 1, i + 1]
        v3 = values[j + 1, i]
        x0, x1 = xs[i], xs[i + 1]
        y0, y1 = ys[j], ys[j + 1]

        def point(edge):
            if edge == 0:
                return (interpolate(v0, v1, x0, x1, level), y0)
            if edge == 1:
                return (x1, interpolate(v1, v2, y0, y1, level))
            if edge == 2:
                return (interpolate(v3, v2, x0, x1, level), y1)
            return (x0, interpolate(v0, v3, y0, y1, level))

        for e1, e2 in CASE_SEGMENTS[int(cases[j, i])]:
            segments.append((point(e1), point(e2)))
    return np.array(segments, dtype=float).reshape(-1, 2, 2)


def stitch_segments(segments: np.ndarray, decimals: int = 9) -> List[np.ndarray]:
    """
    Join segments sharing endpoints into polylines.

    Closed loops repeat their first point at the end.
    """
    def key(p):
        return (round(float(p[0]), decimals), round(float(p[1]), decimals))

    touching: Dict[Tuple[float, float], List[int]] = defaultdict(list)
    for n, (a, b) in enumerate(segments):
        touching[key(a)].append(n)
        touching[key(b)].append(n)

    used = np.zeros(len(segments), dtype=bool)

    def walk(start_point, line):
        point = start_point
        while True:
            nxt = next((n for n in touching[key(point)] if not used[n]), None)
            if nxt is None:
                return
            used[nxt] = True
            a, b = segments[nxt]
            point = b if key(a) == key(point) else a
            line.append(point)

    polylines = []
    for n in range(len(segments)):
        if used[n]:
            continue
        used[n] = True
        a, b = segments[n]
        forward = [a, b]
        walk(b, forward)
        backward = []
        walk(a, backward)
        polylines.append(np.array(backward[::-1] + forward, dtype=float))
    return polylines


@dataclass
class IsolineSet:
    level: float
    segments: np.ndarray          # (K, 2, 3)
    polylines: List[TraceSample]

    def __len__(self):
        return len(self.segments)


def extract_isolines(field: Potential, x_range: Range, y_range: Range, level: float,
                     resolution: int = GRID_RESOLUTION, height: Optional[Potential] = None,
                     lift: float = 0.0) -> IsolineSet:
    """
    Isolines field(x, y) == level.

    Points are lifted onto `height` (plus `lift`) when given, otherwise they
    sit at z = lift. Polyline magnitudes are |grad field| at each point;
    aux holds the level.
    """
    xs, ys, values = evaluate_grid(field, x_range, y_range, resolution)
    flat = marching_squares(values, xs, ys, level)
    return IsolineSet(level, _lift(flat.reshape(-1, 2), height, lift).reshape(-1, 2, 3),
                      [_polyline(p, field, height, lift, level) for p in stitch_segments(flat)])


def extract_contours(field: Potential, x_range: Range, y_range: Range, levels: Sequence[float],
                     resolution: int = GRID_RESOLUTION, height: Optional[Potential] = None,
                     lift: float = 0.0) -> List[IsolineSet]:
    """One IsolineSet per level; the field grid is sampled once."""
    xs, ys, values = evaluate_grid(field, x_range, y_range, resolution)
    results = []
    for level in levels:
        flat = marching_squares(values, xs, ys, level)
        results.append(IsolineSet(level, _lift(flat.reshape(-1, 2), height, lift).reshape(-1, 2, 3),
                                  [_polyline(p, field, height, lift, level) for p in stitch_segments(flat)]))
    return results


def _lift(points: np.ndarray, height: Optional[Potential], lift: float) -> np.ndarray:
    if len(points) == 0:
        return np.zeros((0, 3))
    if height is None:
        z = np.full(len(points), lift)
    else:
        z = np.broadcast_to(safe_value(height(points[:, 0], points[:, 1])), (len(points),)) + lift
    return np.column_stack([points, z])


def _polyline(points: np.ndarray, field: Potential, height: Optional[Potential], lift: float,
              level: float) -> TraceSample:
    gx, gy = central_gradient(field, points[:, 0], points[:, 1])
    magnitudes = safe_value(np.hypot(gx, gy))
    return TraceSample(_lift(points, height, lift),
                       np.broadcast_to(magnitudes, (len(points),)),
                       np.full(len(points), float(level)))
