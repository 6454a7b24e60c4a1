"""
Monte Carlo localization against a line-segment map.

Odometry drives the motion model over every particle, laser scans drive the
ray-cast observation model and periodic systematic resampling, and the pose
estimate is the weighted mean of the particle set. Every public operation
runs synchronously on the caller's thread; the caller serializes events.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, fields, replace
from typing import List, Optional, Sequence, Tuple, Union

from .config import filter_flat
from .geom import (
    TWO_PI, Vec2, angle_diff, base_link_to_map, dist, rotate, scan_increment,
)
from .vector_map import VectorMap

STATUS_IGNORED = "ignored"
STATUS_RESET = "reset"
STATUS_MOVED = "moved"
STATUS_GATED = "gated"
STATUS_UPDATED = "updated"
STATUS_RESAMPLED = "resampled"
STATUS_COLLAPSED = "collapsed"


@dataclass
class Particle:
    loc: Vec2 = (0.0, 0.0)
    angle: float = 0.0
    log_weight: float = 0.0


def _num(raw, default, kind=float):
    """Coerce a config value, falling back to default."""
    try:
        return kind(raw)
    except (TypeError, ValueError):
        return default


# Float tunables that must be strictly positive; the rest only non-negative.
_POSITIVE_FIELDS = frozenset(("var_obs", "max_update_dist", "odom_jump_dist"))
# The laser may sit behind the robot center.
_SIGNED_FIELDS = frozenset(("laser_offset",))


@dataclass(frozen=True)
class FilterParams:
    num_particles: int = 50
    var_obs: float = 1.0
    d_short: float = 0.5
    d_long: float = 0.5
    k1: float = 0.50  # translation error per unit translation
    k2: float = 0.25  # translation error per unit rotation
    k3: float = 0.50  # angular error per unit translation
    k4: float = 0.75  # angular error per unit rotation
    init_sigma_xy: float = 0.25
    init_sigma_angle: float = math.pi / 6.0
    laser_offset: float = 0.2
    ray_downsample: int = 10
    min_update_dist: float = 0.1
    max_update_dist: float = 1.0
    odom_jump_dist: float = 1.0
    resample_interval: int = 6
    range_margin: float = 0.05
    seed: Optional[int] = None

    @classmethod
    def from_config(cls, cfg: Optional[dict]) -> "FilterParams":
        """Build from the particle_filter config section."""
        flat = filter_flat(cfg)
        kwargs = {}
        for f in fields(cls):
            name = f.name
            default = f.default
            raw = flat.get(name, default)
            if name == "seed":
                kwargs[name] = None if raw is None else _num(raw, None, int)
            elif isinstance(default, int):
                kwargs[name] = max(1, _num(raw, default, int))
            else:
                val = _num(raw, default, float)
                if not math.isfinite(val):
                    val = default
                elif val < 0.0 and name not in _SIGNED_FIELDS:
                    val = default
                elif val == 0.0 and name in _POSITIVE_FIELDS:
                    val = default
                kwargs[name] = val
        return cls(**kwargs)


class ParticleFilter:
    def __init__(self, params: Optional[FilterParams] = None,
                 rng: Optional[random.Random] = None, maps_dir: str = "maps"):
        self.params = params or FilterParams()
        # Anything with gauss/uniform/random works; tests inject stubs.
        self.rng = rng if rng is not None else random.Random(self.params.seed)
        self.maps_dir = maps_dir
        self.map = VectorMap()
        self.particles: List[Particle] = []
        self.prev_odom_loc: Vec2 = (0.0, 0.0)
        self.prev_odom_angle = 0.0
        self.odom_initialized = False
        self.last_update_loc: Vec2 = (0.0, 0.0)
        self.updates_since_resample = 0
        self.max_log_weight = 0.0
        self.initialized = False

    # ---------------- lifecycle ----------------

    def initialize(self, map_ref: Union[str, VectorMap], loc: Vec2, angle: float) -> None:
        """Load the map and draw a fresh particle cloud around (loc, angle)."""
        # Load first so a bad map leaves the current session untouched.
        if isinstance(map_ref, VectorMap):
            vmap = map_ref
        else:
            vmap = VectorMap.load(str(map_ref), self.maps_dir)
        self.map = vmap
        self.particles = []
        self.odom_initialized = False
        loc = (float(loc[0]), float(loc[1]))
        self._reset_odom(loc, float(angle))
        self.max_log_weight = 0.0

        p = self.params
        rng = self.rng
        for _ in range(p.num_particles):
            x = rng.gauss(loc[0], p.init_sigma_xy)
            y = rng.gauss(loc[1], p.init_sigma_xy)
            th = rng.gauss(float(angle), p.init_sigma_angle)
            self.particles.append(Particle((x, y), th, 0.0))
        self.initialized = True

    def _reset_odom(self, loc: Vec2, angle: float) -> None:
        """Called on initialize and when the robot jumps ("kidnapped")."""
        self.last_update_loc = loc
        self.prev_odom_loc = loc
        self.prev_odom_angle = angle
        self.updates_since_resample = 0

    def get_particles(self) -> List[Particle]:
        return [replace(p) for p in self.particles]

    # ---------------- motion model ----------------

    def observe_odometry(self, loc: Vec2, angle: float) -> str:
        """Propagate every particle by the odometry delta since the last reading."""
        if not self.initialized:
            return STATUS_IGNORED
        loc = (float(loc[0]), float(loc[1]))
        angle = float(angle)
        dx = loc[0] - self.prev_odom_loc[0]
        dy = loc[1] - self.prev_odom_loc[1]
        dtrans = math.hypot(dx, dy)

        if not self.odom_initialized or dtrans >= self.params.odom_jump_dist:
            self._reset_odom(loc, angle)
            self.odom_initialized = True
            print("Odom reset due to initialization or large movement.")
            return STATUS_RESET

        dangle = angle_diff(angle, self.prev_odom_angle)
        if abs(dangle) > TWO_PI:
            print(f"Warning: reported change in angle exceeds 2pi ({dangle:.4f} rad)")

        for particle in self.particles:
            # Each particle may have drifted to its own heading, so each gets
            # its own odom -> map rotation.
            map_delta = rotate((dx, dy), angle_diff(particle.angle, self.prev_odom_angle))
            self._move_particle(particle, map_delta, dtrans, dangle)

        self.prev_odom_loc = loc
        self.prev_odom_angle = angle
        return STATUS_MOVED

    def _move_particle(self, particle: Particle, map_delta: Vec2,
                       dtrans: float, dangle: float) -> None:
        p = self.params
        sigma_trans = p.k1 * dtrans + p.k2 * abs(dangle)
        sigma_rot = p.k3 * dtrans + p.k4 * abs(dangle)
        nx = self.rng.gauss(0.0, sigma_trans)
        ny = self.rng.gauss(0.0, sigma_trans)
        nth = self.rng.gauss(0.0, sigma_rot)
        particle.loc = (particle.loc[0] + map_delta[0] + nx,
                        particle.loc[1] + map_delta[1] + ny)
        particle.angle = particle.angle + dangle + nth

    # ---------------- observation model ----------------

    def _cast_scan(self, loc: Vec2, angle: float, num_ranges: int,
                   range_min: float, range_max: float,
                   angle_min: float, angle_max: float) -> List[Tuple[Vec2, float]]:
        """Downsampled virtual scan: one ray per ``ray_downsample`` beams.

        Ray i lines up with measured beam ``i * (num_ranges // rays)`` so the
        comparison in score_particle is angle-consistent.
        """
        num_ranges = int(num_ranges)
        rays = num_ranges // max(1, self.params.ray_downsample)
        if rays <= 0:
            return []
        stride = num_ranges // rays
        inc = scan_increment(num_ranges, angle_min, angle_max)
        origin = base_link_to_map((self.params.laser_offset, 0.0), loc, angle)
        out = []
        for i in range(rays):
            ray_angle = angle + angle_min + (i * stride) * inc
            out.append(self.map.cast_ray(origin, ray_angle, range_min, range_max))
        return out

    def predicted_scan(self, loc: Vec2, angle: float, num_ranges: int,
                       range_min: float, range_max: float,
                       angle_min: float, angle_max: float) -> List[Vec2]:
        """Map-frame points the laser would see from pose (loc, angle)."""
        return [pt for pt, _ in self._cast_scan(loc, angle, num_ranges, range_min,
                                                range_max, angle_min, angle_max)]

    def score_particle(self, particle: Particle, ranges: Sequence[float],
                       range_min: float, range_max: float,
                       angle_min: float, angle_max: float) -> float:
        """Add the clipped-residual log-likelihood of ranges to particle.log_weight."""
        p = self.params
        cast = self._cast_scan(particle.loc, particle.angle, len(ranges),
                               range_min, range_max, angle_min, angle_max)
        if not cast:
            return 0.0
        ratio = len(ranges) // len(cast)
        meas_hi = (1.0 - p.range_margin) * range_max
        meas_lo = (1.0 + p.range_margin) * range_min

        log_error_sum = 0.0
        for i, (_, predicted) in enumerate(cast):
            measured = float(ranges[ratio * i])
            # Returns at or beyond the sensor limits are unreliable.
            if predicted > range_max or predicted < range_min:
                continue
            if measured > meas_hi or measured < meas_lo:
                continue
            residual = measured - predicted
            residual = min(residual, p.d_long)
            residual = max(residual, -p.d_short)
            log_error_sum += -(residual * residual) / p.var_obs

        particle.log_weight += log_error_sum
        return log_error_sum

    def observe_laser(self, ranges: Sequence[float], range_min: float, range_max: float,
                      angle_min: float, angle_max: float) -> str:
        """Weight all particles against a scan; resample every resample_interval updates."""
        if not self.initialized or not self.odom_initialized:
            return STATUS_IGNORED
        p = self.params
        moved = dist(self.prev_odom_loc, self.last_update_loc)
        # Skip static jitter and post-reset jumps.
        if not (p.min_update_dist < moved < p.max_update_dist):
            return STATUS_GATED

        best = -math.inf
        for particle in self.particles:
            self.score_particle(particle, ranges, range_min, range_max, angle_min, angle_max)
            if particle.log_weight > best:
                best = particle.log_weight
        if self.particles:
            self.max_log_weight = best
        self.last_update_loc = self.prev_odom_loc

        self.updates_since_resample += 1
        if self.updates_since_resample >= p.resample_interval:
            self.updates_since_resample = 0
            return self.resample()
        return STATUS_UPDATED

    # ---------------- resampling ----------------

    def resample(self) -> str:
        """Systematic resampling: one random offset, N equally spaced draws."""
        if not self.particles or not self.odom_initialized:
            return STATUS_IGNORED
        n = self.params.num_particles

        breakpoints = []
        total = 0.0
        for particle in self.particles:
            total += math.exp(particle.log_weight - self.max_log_weight)
            breakpoints.append(total)

        stride = total / n
        if not stride > 0.0 or not math.isfinite(stride):
            print(f"Resample skipped: weights collapsed (total={total!r}).")
            return STATUS_COLLAPSED

        sample_point = self.rng.random() * stride
        i = 0
        last = len(self.particles) - 1
        new_particles: List[Particle] = []
        for m in range(n):
            u = sample_point + m * stride
            while breakpoints[i] <= u and i < last:
                i += 1
            src = self.particles[i]
            new_particles.append(Particle(src.loc, src.angle, 0.0))

        self.particles = new_particles
        self.max_log_weight = 0.0
        return STATUS_RESAMPLED

    # ---------------- pose estimate ----------------

    def _normalized_weights(self) -> List[float]:
        weights = [math.exp(p.log_weight - self.max_log_weight) for p in self.particles]
        total = sum(weights)
        if not total > 0.0 or not math.isfinite(total):
            # Collapsed filter: fall back to an unweighted mean.
            return [1.0 / len(weights)] * len(weights)
        return [w / total for w in weights]

    def get_location(self) -> Optional[Tuple[Vec2, float]]:
        """Weighted mean pose. Heading is a plain (non-circular) mean."""
        if not self.particles:
            return None
        weights = self._normalized_weights()
        # Accumulate offsets from a reference particle so identical particles
        # return their pose exactly.
        ref = self.particles[0]
        sx = sy = sth = 0.0
        for w, particle in zip(weights, self.particles):
            sx += w * (particle.loc[0] - ref.loc[0])
            sy += w * (particle.loc[1] - ref.loc[1])
            sth += w * (particle.angle - ref.angle)
        return (ref.loc[0] + sx, ref.loc[1] + sy), ref.angle + sth

    def effective_sample_size(self) -> float:
        """1 / sum(w^2) of the normalized weights, 0 with no particles."""
        if not self.particles:
            return 0.0
        denom = sum(w * w for w in self._normalized_weights())
        return 0.0 if denom <= 1e-12 else 1.0 / denom
