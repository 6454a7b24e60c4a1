# pfloc/draw.py

from __future__ import annotations

import math
from typing import Iterable, Sequence, Tuple

import pygame

from .config import (
    ESTIMATE_COLOR, GREY, MAP_COLOR, PARTICLE_COLOR, PATH_COLOR, SCAN_COLOR, TEXT_COLOR,
)
from .geom import Vec2
from .vector_map import VectorMap


def world_to_px(pt: Vec2, view: dict) -> Tuple[int, int]:
    """Map units (y up) to screen pixels (y down)."""
    ppu = float(view.get("px_per_unit", 40.0))
    ox = float(view.get("origin_x", 0.0))
    oy = float(view.get("origin_y", 0.0))
    return (int(round(ox + pt[0] * ppu)), int(round(oy - pt[1] * ppu)))


def px_to_world(px: Sequence[float], view: dict) -> Vec2:
    ppu = float(view.get("px_per_unit", 40.0)) or 1.0
    ox = float(view.get("origin_x", 0.0))
    oy = float(view.get("origin_y", 0.0))
    return ((px[0] - ox) / ppu, (oy - px[1]) / ppu)


def fit_view(vmap: VectorMap, width: int, height: int, margin_px: float = 30.0) -> dict:
    """View dict that fits the whole map inside a width x height surface."""
    xmin, ymin, xmax, ymax = vmap.bounds()
    span_x = max(1e-6, xmax - xmin)
    span_y = max(1e-6, ymax - ymin)
    ppu = min((width - 2 * margin_px) / span_x, (height - 2 * margin_px) / span_y)
    ppu = max(1.0, ppu)
    return {
        "px_per_unit": ppu,
        "origin_x": margin_px - xmin * ppu,
        "origin_y": height - margin_px + ymin * ppu,
    }


def draw_map(surface, vmap: VectorMap, view: dict, color=MAP_COLOR) -> None:
    """Draw map line segments."""
    for x0, y0, x1, y1 in vmap.lines:
        pygame.draw.line(surface, color, world_to_px((x0, y0), view), world_to_px((x1, y1), view), 2)


def draw_particles(surface, particles: Iterable, view: dict, color=PARTICLE_COLOR,
                   arrow_len: float = 0.15) -> None:
    """Draw each particle as a dot with a short heading tick."""
    for p in particles:
        x, y = p.loc
        start = world_to_px((x, y), view)
        tip = world_to_px((x + arrow_len * math.cos(p.angle), y + arrow_len * math.sin(p.angle)), view)
        pygame.draw.line(surface, color, start, tip, 1)
        pygame.draw.circle(surface, color, start, 2)


def draw_estimate(surface, loc: Vec2, angle: float, view: dict, color=ESTIMATE_COLOR,
                  length: float = 0.4, offset: float = 45, arm: float = 0.15) -> None:
    """Draw a pose as a circle with a chevron."""
    center = world_to_px(loc, view)
    pygame.draw.circle(surface, color, center, 6, 2)
    tip_w = (loc[0] + length * math.cos(angle), loc[1] + length * math.sin(angle))
    tip = world_to_px(tip_w, view)
    pygame.draw.line(surface, color, center, tip, 2)
    for side in (-1.0, 1.0):
        a = angle + math.pi + side * math.radians(offset)
        end = world_to_px((tip_w[0] + arm * math.cos(a), tip_w[1] + arm * math.sin(a)), view)
        pygame.draw.line(surface, color, tip, end, 2)


def draw_scan(surface, points: Iterable[Vec2], origin: Vec2, view: dict,
              color=SCAN_COLOR, rays: bool = False) -> None:
    """Draw scan hits, optionally with the rays from the sensor origin."""
    o = world_to_px(origin, view)
    for pt in points:
        p = world_to_px(pt, view)
        if rays:
            pygame.draw.line(surface, GREY, o, p, 1)
        pygame.draw.circle(surface, color, p, 2)


def draw_path(surface, path: Sequence[Vec2], view: dict, color=PATH_COLOR) -> None:
    if len(path) < 2:
        return
    pygame.draw.lines(surface, color, False, [world_to_px(p, view) for p in path], 2)


def draw_status(surface, font, lines: Sequence[str], pos=(10, 10), color=TEXT_COLOR) -> None:
    """Stack text lines in the top-left corner."""
    x, y = pos
    for line in lines:
        img = font.render(line, True, color)
        surface.blit(img, (x, y))
        y += img.get_height() + 2
