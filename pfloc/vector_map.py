# pfloc/vector_map.py
"""
Read-only line-segment map with the intersection primitive the filter,
simulator and planner ray-cast against.

Map files hold one segment per line: ``x0, y0, x1, y1`` (commas or
whitespace). Blank lines and ``#`` comments are skipped.
"""

from __future__ import annotations

import math
import os
from typing import Iterable, List, Optional, Tuple

from .geom import Segment, Vec2, segment_intersection


class MapLoadError(ValueError):
    pass


class VectorMap:
    def __init__(self, segments: Optional[Iterable[Segment]] = None, name: str = ""):
        self.name = name
        self._lines: Tuple[Segment, ...] = tuple(
            (float(x0), float(y0), float(x1), float(y1)) for x0, y0, x1, y1 in (segments or ())
        )

    @property
    def lines(self) -> Tuple[Segment, ...]:
        return self._lines

    def __len__(self) -> int:
        return len(self._lines)

    @classmethod
    def from_segments(cls, segments: Iterable[Segment], name: str = "") -> "VectorMap":
        return cls(segments, name=name)

    @classmethod
    def load(cls, identifier: str, maps_dir: str = "maps") -> "VectorMap":
        """Load ``<maps_dir>/<identifier>.txt``."""
        path = identifier
        if not os.path.isfile(path):
            path = os.path.join(maps_dir, f"{identifier}.txt")
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise MapLoadError(f"cannot read map '{identifier}' ({path}): {e}") from e
        segments = parse_segments(text, source=path)
        print(f"Loaded map '{identifier}' with {len(segments)} segments from {path}")
        return cls(segments, name=identifier)

    @staticmethod
    def intersect(a: Segment, b: Segment) -> Optional[Vec2]:
        return segment_intersection(a, b)

    def bounds(self) -> Tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of all segments."""
        if not self._lines:
            return (0.0, 0.0, 0.0, 0.0)
        xs = [v for s in self._lines for v in (s[0], s[2])]
        ys = [v for s in self._lines for v in (s[1], s[3])]
        return (min(xs), min(ys), max(xs), max(ys))

    def cast_ray(self, origin: Vec2, ray_angle: float,
                 range_min: float, range_max: float) -> Tuple[Vec2, float]:
        """Nearest hit along a ray from range_min to range_max.

        Returns (point, range from origin). With no hit the point is the far
        end of the ray and the range is range_max.
        """
        c, s = math.cos(ray_angle), math.sin(ray_angle)
        ray = (origin[0] + range_min * c, origin[1] + range_min * s,
               origin[0] + range_max * c, origin[1] + range_max * s)
        best_pt = (ray[2], ray[3])
        best_range = float(range_max)
        for line in self._lines:
            pt = self.intersect(line, ray)
            if pt is None:
                continue
            d = math.hypot(pt[0] - origin[0], pt[1] - origin[1])
            if d < best_range:
                best_range = d
                best_pt = pt
        return best_pt, best_range

    def segment_blocked(self, seg: Segment) -> bool:
        """True if seg crosses or touches any map line."""
        for line in self._lines:
            if self.intersect(line, seg) is not None:
                return True
        return False


def parse_segments(text: str, source: str = "<string>") -> List[Segment]:
    segments: List[Segment] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.replace(",", " ").split()
        if len(parts) != 4:
            raise MapLoadError(f"{source}:{lineno}: expected 4 values, got {len(parts)}")
        try:
            x0, y0, x1, y1 = (float(p) for p in parts)
        except ValueError as e:
            raise MapLoadError(f"{source}:{lineno}: {e}") from e
        segments.append((x0, y0, x1, y1))
    return segments
