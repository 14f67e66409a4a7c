"""
Finite-time Lyapunov estimate for the particle dynamics.

Two particles start at rest, one nudged by `perturbation` in x, and are
integrated with the same damped gradient descent as the particle system
(no walls, no respawn). The estimate is the mean over all steps of
ln(separation / perturbation); positive values mark regions where nearby
starts diverge.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .fields import DEFAULT_H, Potential, central_gradient
from .ir import Range


@dataclass
class LyapunovConfig:
    steps: int = 100
    dt: float = 0.02
    perturbation: float = 1e-3
    gamma: float = 0.5      # damping
    alpha: float = 2.0      # force coupling
    h: float = DEFAULT_H


def integrate_future(potential: Potential, x0, y0, config: LyapunovConfig) -> Tuple[np.ndarray, np.ndarray]:
    """
    Positions after each step, shape (steps,) + shape(x0).

    x0, y0 may be arrays; every start is integrated independently.
    """
    x = np.array(x0, dtype=float)
    y = np.array(y0, dtype=float)
    vx = np.zeros_like(x)
    vy = np.zeros_like(y)
    xs = np.empty((config.steps,) + x.shape)
    ys = np.empty((config.steps,) + y.shape)

    with np.errstate(all="ignore"):
        for i in range(config.steps):
            gx, gy = central_gradient(potential, x, y, config.h)
            ax = -config.gamma * vx - config.alpha * gx
            ay = -config.gamma * vy - config.alpha * gy
            vx = vx + ax * config.dt
            vy = vy + ay * config.dt
            x = x + vx * config.dt
            y = y + vy * config.dt
            xs[i] = x
            ys[i] = y
    return xs, ys


def lyapunov_exponent(potential: Potential, x, y, config: LyapunovConfig = None):
    """
    Divergence estimate at (x, y); scalar or array like the inputs.

    Steps where either trajectory is non-finite, or the separation is zero,
    add nothing to the sum, but the mean is still taken over all steps.
    """
    config = config or LyapunovConfig()
    x1, y1 = integrate_future(potential, x, y, config)
    x2, y2 = integrate_future(potential, np.asarray(x, dtype=float) + config.perturbation, y, config)

    with np.errstate(all="ignore"):
        separation = np.hypot(x1 - x2, y1 - y2)
        usable = np.isfinite(x1) & np.isfinite(x2) & np.isfinite(separation) & (separation > 0)
        terms = np.where(usable, np.log(np.where(usable, separation, 1.0) / config.perturbation), 0.0)
    total = terms.sum(axis=0) / config.steps

    if np.ndim(total) == 0:
        return float(total)
    return total


def lyapunov_grid(potential: Potential, x_range: Range, y_range: Range, width: int = 32,
                  height: int = 32, config: LyapunovConfig = None, normalize: bool = True) -> np.ndarray:
    """
    Estimates on a width x height lattice, indexed [j, i] with j along y.

    Non-finite estimates read 0. With `normalize`, values are divided by the
    largest exponent and clamped at 0 whenever that maximum is positive.
    """
    X, Y = np.meshgrid(x_range.linspace(width), y_range.linspace(height))
    grid = np.asarray(lyapunov_exponent(potential, X, Y, config), dtype=float)
    grid = np.where(np.isfinite(grid), grid, 0.0)
    peak = grid.max() if grid.size else 0.0
    if normalize and peak > 0:
        grid = np.maximum(0.0, grid / peak)
    return grid
