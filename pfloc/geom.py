# pfloc/geom.py
from __future__ import annotations

import math
from typing import Optional, Tuple

Vec2 = Tuple[float, float]
Segment = Tuple[float, float, float, float]

TWO_PI = 2.0 * math.pi


def wrap_angle(rad: float) -> float:
    """Wrap angle to [-pi, pi)."""
    return (float(rad) + math.pi) % TWO_PI - math.pi


def angle_diff(a: float, b: float) -> float:
    """Signed difference a - b wrapped to [-pi, pi)."""
    return wrap_angle(float(a) - float(b))


def heading_unit(angle: float) -> Vec2:
    """Unit vector for a heading in the map frame (0=+x, CCW positive)."""
    return (math.cos(angle), math.sin(angle))


def rotate(vec: Vec2, angle: float) -> Vec2:
    """Rotate a 2D vector CCW by angle."""
    c, s = math.cos(angle), math.sin(angle)
    return (c * vec[0] - s * vec[1], s * vec[0] + c * vec[1])


def dist(a: Vec2, b: Vec2) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def offset_point(loc: Vec2, angle: float, d: float) -> Vec2:
    """Point d ahead of loc along heading angle."""
    ux, uy = heading_unit(angle)
    return (loc[0] + d * ux, loc[1] + d * uy)


def scan_increment(num_ranges: int, angle_min: float, angle_max: float) -> float:
    """Angle between consecutive beams of a scan spanning [angle_min, angle_max]."""
    if num_ranges <= 1:
        return 0.0
    return (float(angle_max) - float(angle_min)) / (num_ranges - 1)


def segment_intersection(a: Segment, b: Segment, eps: float = 1e-12) -> Optional[Vec2]:
    """Intersection point of two segments, endpoints inclusive, or None.

    Parallel and collinear segments report no intersection.
    """
    ax0, ay0, ax1, ay1 = a
    bx0, by0, bx1, by1 = b
    rx, ry = ax1 - ax0, ay1 - ay0
    sx, sy = bx1 - bx0, by1 - by0
    rxs = rx * sy - ry * sx
    if abs(rxs) < eps:
        return None
    qpx, qpy = bx0 - ax0, by0 - ay0
    t = (qpx * sy - qpy * sx) / rxs
    u = (qpx * ry - qpy * rx) / rxs
    if -eps <= t <= 1.0 + eps and -eps <= u <= 1.0 + eps:
        return (ax0 + t * rx, ay0 + t * ry)
    return None


def offset_segment(seg: Segment, offset: float) -> Segment:
    """Shift a segment sideways by offset (positive = left of its direction)."""
    x0, y0, x1, y1 = seg
    dx, dy = x1 - x0, y1 - y0
    length = math.hypot(dx, dy)
    if length <= 1e-12:
        return seg
    nx, ny = -dy / length * offset, dx / length * offset
    return (x0 + nx, y0 + ny, x1 + nx, y1 + ny)


def map_to_base_link(point: Vec2, loc: Vec2, angle: float, laser_offset: float = 0.0) -> Vec2:
    """Express a map-frame point in the robot frame, optionally relative to the laser."""
    rx, ry = rotate((point[0] - loc[0], point[1] - loc[1]), -angle)
    return (rx - laser_offset, ry)


def base_link_to_map(point: Vec2, loc: Vec2, angle: float) -> Vec2:
    """Express a robot-frame point in the map frame."""
    wx, wy = rotate(point, angle)
    return (loc[0] + wx, loc[1] + wy)
