# pfloc/sim.py
"""
Simulated robot, odometry and laser for exercising the filter without hardware.
"""

from __future__ import annotations

import math
import random
from typing import List, Optional, Sequence, Tuple

from .geom import (
    Vec2, base_link_to_map, map_to_base_link, rotate, scan_increment, wrap_angle,
)
from .vector_map import VectorMap


def _clamp(val: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, val))


def simulate_scan(vmap: VectorMap, loc: Vec2, angle: float, lidar: dict,
                  rng: Optional[random.Random] = None, sigma: float = 0.0,
                  laser_offset: float = 0.2) -> List[float]:
    """Full-resolution range scan from pose (loc, angle).

    ``lidar`` holds num_ranges, range_min, range_max, angle_min, angle_max
    (see config.lidar_flat). Noisy ranges are clamped to the sensor limits.
    """
    n = int(lidar.get("num_ranges", 1081))
    r_min = float(lidar.get("range_min", 0.02))
    r_max = float(lidar.get("range_max", 10.0))
    a_min = float(lidar.get("angle_min", -math.pi / 2))
    a_max = float(lidar.get("angle_max", math.pi / 2))
    inc = scan_increment(n, a_min, a_max)
    origin = base_link_to_map((laser_offset, 0.0), loc, angle)
    ranges = []
    for j in range(n):
        _, r = vmap.cast_ray(origin, angle + a_min + j * inc, r_min, r_max)
        if rng is not None and sigma > 0.0:
            r = _clamp(r + rng.gauss(0.0, sigma), r_min, r_max)
        ranges.append(r)
    return ranges


class SimRobot:
    """Ground-truth pose plus a drifting odometry frame.

    Odometry starts at (0, 0, 0) regardless of where the robot is on the
    map, like a wheel encoder integrator that was zeroed at power-on.
    """

    def __init__(self, loc: Vec2, angle: float, rng: Optional[random.Random] = None,
                 odom_sigma_xy: float = 0.0, odom_sigma_ang: float = 0.0):
        self.loc = (float(loc[0]), float(loc[1]))
        self.angle = float(angle)
        self.rng = rng or random.Random()
        self.odom_sigma_xy = float(odom_sigma_xy)
        self.odom_sigma_ang = float(odom_sigma_ang)
        self.odom_loc: Vec2 = (0.0, 0.0)
        self.odom_angle = 0.0

    def drive(self, v: float, omega: float, dt: float) -> None:
        """Advance truth and odometry by a body-frame (v, omega) command."""
        dth = omega * dt
        step = v * dt
        mid = self.angle + 0.5 * dth
        self.loc = (self.loc[0] + step * math.cos(mid), self.loc[1] + step * math.sin(mid))
        self.angle = wrap_angle(self.angle + dth)

        o_step = step
        o_dth = dth
        if self.odom_sigma_xy > 0.0:
            o_step += self.rng.gauss(0.0, self.odom_sigma_xy)
        if self.odom_sigma_ang > 0.0:
            o_dth += self.rng.gauss(0.0, self.odom_sigma_ang)
        wx, wy = rotate((o_step, 0.0), self.odom_angle + 0.5 * o_dth)
        self.odom_loc = (self.odom_loc[0] + wx, self.odom_loc[1] + wy)
        self.odom_angle = wrap_angle(self.odom_angle + o_dth)

    def odometry(self) -> Tuple[Vec2, float]:
        return self.odom_loc, self.odom_angle

    def glitch_odometry(self, jump: float) -> None:
        """Jump the odometry reading forward without moving the robot."""
        wx, wy = rotate((jump, 0.0), self.odom_angle)
        self.odom_loc = (self.odom_loc[0] + wx, self.odom_loc[1] + wy)

    def scan(self, vmap: VectorMap, lidar: dict, sigma: float = 0.0,
             laser_offset: float = 0.2) -> List[float]:
        return simulate_scan(vmap, self.loc, self.angle, lidar, self.rng, sigma, laser_offset)


def follow_path(robot: SimRobot, path: Sequence[Vec2], speed: float, dt: float,
                reach_dist: float = 0.15, max_omega: float = 2.0) -> List[Vec2]:
    """Steer toward the first waypoint, drop waypoints once reached.

    Returns the remaining path; an empty list means the goal was reached
    and the robot did not move.
    """
    remaining = list(path)
    while remaining and math.hypot(remaining[0][0] - robot.loc[0],
                                   remaining[0][1] - robot.loc[1]) < reach_dist:
        remaining.pop(0)
    if not remaining:
        return remaining
    # Bearing to the waypoint in the robot frame is the heading error.
    lx, ly = map_to_base_link(remaining[0], robot.loc, robot.angle)
    err = math.atan2(ly, lx)
    omega = _clamp(2.0 * err, -max_omega, max_omega)
    v = speed * max(0.0, math.cos(err))
    robot.drive(v, omega, dt)
    return remaining
