"""
Particle integrator: damped gradient descent on the surface potential.

Each particle is pushed downhill by -alpha * grad(phi), slowed by
-gamma * v, advanced with symplectic Euler (velocity first, then position),
bounced off the domain walls and respawned near an anchor point whenever
its state stops being finite.
"""

import math
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .fields import DEFAULT_H, GradientCache, Potential, central_gradient
from .ir import DEFAULT_RANGE, GraphIR, Particle, Range

# Default respawn anchors (the four exceptional points of the reference
# scene); programs with other domains pass their own.
EXCEPTIONAL_POINTS = ((3.0, 2.0), (-2.0, 4.0), (-4.0, -3.0), (2.0, -4.0))

# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class PhysicsConfig:
    """Integration constants for one particle system"""
    gamma: float = 0.5           # damping
    alpha: float = 2.0           # gradient force multiplier
    dt: float = 0.016            # also the ceiling for caller-supplied steps
    restitution: float = 0.8     # 0 sticks, 1 is elastic
    h: float = DEFAULT_H
    trail_length: int = 50
    spawn_radius: Tuple[float, float] = (1.0, 2.5)
    tangential_speed: float = 0.5
    x_range: Range = DEFAULT_RANGE
    y_range: Range = DEFAULT_RANGE

    @classmethod
    def from_ir(cls, ir: GraphIR, **overrides) -> "PhysicsConfig":
        return cls(x_range=ir.x_range, y_range=ir.y_range, **overrides)

    def with_ranges(self, x_range: Range, y_range: Range) -> "PhysicsConfig":
        return replace(self, x_range=x_range, y_range=y_range)

# ============================================================================
# INTEGRATOR
# ============================================================================

class ParticleIntegrator:
    """
    Advances particles over a potential phi(x, y).

    The gradient cache belongs to the integrator; call set_potential() (or
    invalidate()) whenever phi changes, e.g. on a new animation frame.
    """

    def __init__(self, potential: Potential, config: Optional[PhysicsConfig] = None,
                 anchors: Optional[Sequence[Tuple[float, float]]] = None,
                 cache: Optional[GradientCache] = None, seed: Optional[int] = None):
        self.potential = potential
        self.config = config or PhysicsConfig()
        if anchors:
            self.anchors = [tuple(map(float, a)) for a in anchors]
        else:
            self.anchors = [(self._center(self.config.x_range), self._center(self.config.y_range))]
        self.cache = cache
        self.rng = np.random.default_rng(seed)
        self.respawn_count = 0

    @staticmethod
    def _center(r: Range) -> float:
        return 0.5 * (r.min + r.max)

    def set_potential(self, potential: Potential):
        self.potential = potential
        self.invalidate()

    def invalidate(self):
        if self.cache is not None:
            self.cache.clear()

    def gradient(self, x: float, y: float) -> Tuple[float, float]:
        if self.cache is not None:
            return self.cache.gradient(self.potential, x, y, self.config.h)
        gx, gy = central_gradient(self.potential, x, y, self.config.h)
        return float(gx), float(gy)

    # ------------------------------------------------------------------
    # spawning
    # ------------------------------------------------------------------

    def spawn(self, particle_id: int) -> Particle:
        p = Particle(particle_id, 0.0, 0.0, trail=deque(maxlen=self.config.trail_length))
        self._place(p)
        return p

    def populate(self, count: int) -> List[Particle]:
        """Spawn `count` particles distributed round-robin over the anchors"""
        return [self.spawn(i) for i in range(count)]

    def _place(self, p: Particle):
        cfg = self.config
        ax, ay = self.anchors[p.id % len(self.anchors)]
        low, high = cfg.spawn_radius
        radius = low + self.rng.random() * (high - low)
        angle = self.rng.random() * 2 * math.pi
        p.x = cfg.x_range.clamp(ax + radius * math.cos(angle))
        p.y = cfg.y_range.clamp(ay + radius * math.sin(angle))
        p.vx = -cfg.tangential_speed * math.sin(angle)
        p.vy = cfg.tangential_speed * math.cos(angle)

    def respawn(self, p: Particle):
        """Fresh position near the particle's anchor, tangential velocity, empty trail"""
        self._place(p)
        p.trail.clear()
        self.respawn_count += 1

    # ------------------------------------------------------------------
    # stepping
    # ------------------------------------------------------------------

    def advance(self, p: Particle, dt: float):
        cfg = self.config
        dx, dy = self.gradient(p.x, p.y)

        ax = -cfg.gamma * p.vx - cfg.alpha * dx
        ay = -cfg.gamma * p.vy - cfg.alpha * dy
        p.vx += ax * dt
        p.vy += ay * dt
        p.x += p.vx * dt
        p.y += p.vy * dt

        self.bounce(p)
        if not p.is_finite():
            self.respawn(p)

        if p.trail.maxlen != cfg.trail_length:
            p.trail = deque(p.trail, maxlen=cfg.trail_length)
        z = self.potential(p.x, p.y)
        p.trail.append((p.x, p.y, float(z) if math.isfinite(z) else 0.0))

    def bounce(self, p: Particle):
        cfg = self.config
        if p.x < cfg.x_range.min:
            p.x = cfg.x_range.min
            p.vx *= -cfg.restitution
        elif p.x > cfg.x_range.max:
            p.x = cfg.x_range.max
            p.vx *= -cfg.restitution

        if p.y < cfg.y_range.min:
            p.y = cfg.y_range.min
            p.vy *= -cfg.restitution
        elif p.y > cfg.y_range.max:
            p.y = cfg.y_range.max
            p.vy *= -cfg.restitution

    def step(self, particles: Iterable[Particle], dt: Optional[float] = None) -> None:
        """
        Advance every particle by one step.

        Args:
            particles: Particles owned by the caller, updated in place
            dt: Frame delta; clamped to config.dt so a slow frame cannot
                blow up the integration
        """
        dt = self.config.dt if dt is None else min(self.config.dt, dt)
        for p in particles:
            self.advance(p, dt)

    def run(self, particles: List[Particle], steps: int, dt: Optional[float] = None) -> List[Particle]:
        for _ in range(steps):
            self.step(particles, dt)
        return particles

# ============================================================================
# FLUX DENSITY
# ============================================================================

def particle_density(positions: Sequence[Tuple[float, float]], x_range: Range, y_range: Range,
                     grid_size: int = 32) -> np.ndarray:
    """Particle counts per cell, indexed [j, i] with j along y; outside points are ignored."""
    counts = np.zeros((grid_size, grid_size))
    if len(positions) == 0:
        return counts
    pts = np.asarray(positions, dtype=float).reshape(-1, 2)
    i = np.floor((pts[:, 0] - x_range.min) / x_range.span * grid_size).astype(int)
    j = np.floor((pts[:, 1] - y_range.min) / y_range.span * grid_size).astype(int)
    inside = (i >= 0) & (i < grid_size) & (j >= 0) & (j < grid_size)
    np.add.at(counts, (j[inside], i[inside]), 1)
    return counts


@dataclass
class FluxDensity:
    """Temporally smoothed particle density for heat-map overlays"""
    x_range: Range
    y_range: Range
    grid_size: int = 32
    smoothing: float = 0.05
    floor: float = 2.0
    smoothed: np.ndarray = field(default=None, repr=False)

    def __post_init__(self):
        if self.smoothed is None:
            self.smoothed = np.zeros((self.grid_size, self.grid_size))

    def update(self, particles: Iterable[Particle]) -> np.ndarray:
        raw = particle_density([(p.x, p.y) for p in particles], self.x_range, self.y_range, self.grid_size)
        self.smoothed += (raw - self.smoothed) * self.smoothing
        return self.smoothed

    def display_values(self, particle_count: int) -> np.ndarray:
        """Normalized [0, 1] intensity; cells at or below the floor read 0."""
        ceiling = max(40.0, particle_count * 0.5)
        normalized = np.clip((self.smoothed - self.floor) / (ceiling - self.floor), 0.0, 1.0)
        return np.where(self.smoothed > self.floor, normalized ** 0.75, 0.0)


def flux_density(particles: Sequence[Particle], x_range: Range, y_range: Range, grid_size: int = 32) -> np.ndarray:
    """One-shot normalized density (no temporal smoothing)"""
    counts = particle_density([(p.x, p.y) for p in particles], x_range, y_range, grid_size)
    top = counts.max()
    return counts / top if top > 0 else counts
