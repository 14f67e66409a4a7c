"""
Color maps for surfaces, particles and overlays.

The closed G3D set maps onto matplotlib's perceptual colormaps; "default"
is the plain blue-to-red ramp.
"""

from typing import Dict, Sequence, Tuple

import matplotlib
import numpy as np
from matplotlib.colors import Colormap, LinearSegmentedColormap

from .ir import VALID_COLOR_MAPS

DEFAULT_RAMP = [(0.2, 0.2, 0.8), (0.8, 0.2, 0.2)]

# Shown for vertices whose height could not be evaluated
MISSING_COLOR = (0.1, 0.1, 0.15)

_cache: Dict[str, Colormap] = {}


def get_colormap(name: str = "default") -> Colormap:
    """matplotlib colormap for a G3D color map name (unknown names fall back to default)"""
    name = name.lower() if name else "default"
    if name not in VALID_COLOR_MAPS:
        name = "default"
    if name not in _cache:
        if name == "default":
            _cache[name] = LinearSegmentedColormap.from_list("g3d_default", DEFAULT_RAMP)
        else:
            _cache[name] = matplotlib.colormaps[name]
    return _cache[name]


def color_from_map(value: float, name: str = "default") -> Tuple[float, float, float]:
    """RGB for a normalized value; values outside [0, 1] are clamped."""
    cmap = get_colormap(name)
    r, g, b, _ = cmap(float(np.clip(value, 0.0, 1.0)))
    return (float(r), float(g), float(b))


def map_values(values, name: str = "default", vmin: float = None, vmax: float = None) -> np.ndarray:
    """
    Map raw values to an (N, 3) RGB array.

    Args:
        values: Array-like of scalars
        name: G3D color map name
        vmin, vmax: Normalization bounds; default to the finite data extent

    Returns:
        RGB rows; non-finite inputs get MISSING_COLOR
    """
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(values)
    if vmin is None:
        vmin = float(values[finite].min()) if finite.any() else 0.0
    if vmax is None:
        vmax = float(values[finite].max()) if finite.any() else 1.0
    span = vmax - vmin
    normalized = (values - vmin) / span if span > 0 else np.zeros_like(values)
    rgb = get_colormap(name)(np.clip(np.where(finite, normalized, 0.0), 0.0, 1.0))[..., :3]
    rgb[~finite] = MISSING_COLOR
    return rgb


def colormap_gradient(name: str = "default", stops: int = 11) -> str:
    """CSS linear-gradient string, bottom to top, for legends"""
    cmap = get_colormap(name)
    parts = []
    for i, position in enumerate(np.linspace(0.0, 1.0, stops)):
        r, g, b, _ = cmap(position)
        percent = 100.0 * i / (stops - 1)
        parts.append(f"rgb({round(r * 255)}, {round(g * 255)}, {round(b * 255)}) {percent:g}%")
    return f"linear-gradient(to top, {', '.join(parts)})"


def heat_color(intensity: float) -> Tuple[float, float, float]:
    """Blue (0) to red (1) hue ramp used for glyph and arrow magnitudes"""
    from matplotlib.colors import hsv_to_rgb

    hue = (0.6 - 0.6 * float(np.clip(intensity, 0.0, 1.0)))
    r, g, b = hsv_to_rgb((hue, 1.0, 1.0))
    return (float(r), float(g), float(b))


def heat_colors(intensities: Sequence[float]) -> np.ndarray:
    return np.array([heat_color(i) for i in intensities]).reshape(-1, 3)
