# pfloc/planner.py
"""
A* global planner over a lazily expanded 8-connected grid.

Grid nodes are keyed by integer (xi, yi) offsets from the start location.
An edge is traversable when neither the edge nor its two cushion lines
(offset to either side by the robot clearance) touch a map line.
"""

from __future__ import annotations

import heapq
import itertools
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .geom import Segment, Vec2, dist, offset_segment
from .vector_map import VectorMap

GridKey = Tuple[int, int]

NEIGHBOR_OFFSETS: Tuple[GridKey, ...] = (
    (1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1),
)


@dataclass
class Neighbor:
    index: GridKey
    path_length: float
    neighbor_index: int


@dataclass
class Node:
    loc: Vec2
    index: GridKey
    cost: float = math.inf  # path cost from start, not edge cost
    parent: Optional[GridKey] = None
    neighbors: List[Neighbor] = field(default_factory=list)
    visited: bool = False


class GlobalPlanner:
    def __init__(self, vmap: VectorMap, resolution: float = 0.25, cushion: float = 0.2,
                 max_expansions: int = 20000):
        self.map = vmap
        self.resolution = float(resolution)
        self.cushion = float(cushion)
        self.max_expansions = int(max_expansions)
        self.origin: Vec2 = (0.0, 0.0)
        self.nav_map: Dict[GridKey, Node] = {}
        xmin, ymin, xmax, ymax = vmap.bounds()
        pad = self.resolution
        self._bounds = (xmin - pad, ymin - pad, xmax + pad, ymax + pad)

    @classmethod
    def from_config(cls, vmap: VectorMap, planner: dict) -> "GlobalPlanner":
        """Build from a flattened planner config section."""
        return cls(vmap,
                   resolution=float(planner.get("resolution", 0.25)),
                   cushion=float(planner.get("cushion", 0.2)),
                   max_expansions=int(planner.get("max_expansions", 20000)))

    def set_resolution(self, resolution: float) -> None:
        """Change grid spacing; the graph is rebuilt around the current origin."""
        self.resolution = float(resolution)
        self.initialize_map(self.origin)

    def initialize_map(self, start_loc: Vec2) -> None:
        self.origin = (float(start_loc[0]), float(start_loc[1]))
        self.nav_map = {(0, 0): Node(self.origin, (0, 0), cost=0.0)}

    def key_for(self, loc: Vec2) -> GridKey:
        return (int(round((loc[0] - self.origin[0]) / self.resolution)),
                int(round((loc[1] - self.origin[1]) / self.resolution)))

    def loc_for(self, key: GridKey) -> Vec2:
        return (self.origin[0] + key[0] * self.resolution,
                self.origin[1] + key[1] * self.resolution)

    def _node(self, key: GridKey) -> Node:
        node = self.nav_map.get(key)
        if node is None:
            node = Node(self.loc_for(key), key)
            self.nav_map[key] = node
        return node

    def _in_bounds(self, loc: Vec2) -> bool:
        xmin, ymin, xmax, ymax = self._bounds
        return xmin <= loc[0] <= xmax and ymin <= loc[1] <= ymax

    def cushion_lines(self, edge: Segment, offset: float) -> Tuple[Segment, Segment]:
        return offset_segment(edge, offset), offset_segment(edge, -offset)

    def is_valid_neighbor(self, node: Node, neighbor: Neighbor) -> bool:
        """True if the robot can travel from node to neighbor without clipping a wall."""
        dest = self.loc_for(neighbor.index)
        if not self._in_bounds(dest):
            return False
        edge = (node.loc[0], node.loc[1], dest[0], dest[1])
        if self.map.segment_blocked(edge):
            return False
        if self.cushion > 0.0:
            for line in self.cushion_lines(edge, self.cushion):
                if self.map.segment_blocked(line):
                    return False
        return True

    @staticmethod
    def edge_cost(node_a: Node, node_b: Node) -> float:
        return dist(node_a.loc, node_b.loc)

    def get_neighbors(self, key: GridKey) -> List[Neighbor]:
        """Valid neighbors of a node, cached on first visit."""
        node = self._node(key)
        if not node.visited:
            self.visit_node(node)
        return list(node.neighbors)

    def visit_node(self, node: Node) -> None:
        node.neighbors = []
        for i, (dx, dy) in enumerate(NEIGHBOR_OFFSETS):
            idx = (node.index[0] + dx, node.index[1] + dy)
            cand = Neighbor(idx, self.edge_cost(node, Node(self.loc_for(idx), idx)), i)
            if self.is_valid_neighbor(node, cand):
                node.neighbors.append(cand)
        node.visited = True

    def get_global_path(self, goal_loc: Vec2) -> List[Vec2]:
        """A* from the start node to the node nearest goal_loc.

        Returns waypoints from start to goal_loc, or [] when the goal cannot
        be reached within max_expansions.
        """
        if not self.nav_map:
            self.initialize_map(self.origin)
        for node in self.nav_map.values():
            node.cost = math.inf
            node.parent = None
        start = self._node((0, 0))
        start.cost = 0.0
        goal_key = self.key_for(goal_loc)
        goal_pt = self.loc_for(goal_key)

        tie = itertools.count()
        frontier = [(dist(start.loc, goal_pt), next(tie), start.index)]
        closed = set()
        expansions = 0
        found = False
        while frontier:
            _, _, key = heapq.heappop(frontier)
            if key in closed:
                continue
            if key == goal_key:
                found = True
                break
            closed.add(key)
            expansions += 1
            if expansions > self.max_expansions:
                print(f"Planner gave up after {self.max_expansions} expansions.")
                break
            node = self.nav_map[key]
            for nb in self.get_neighbors(key):
                child = self._node(nb.index)
                new_cost = node.cost + nb.path_length
                if new_cost < child.cost:
                    child.cost = new_cost
                    child.parent = key
                    heapq.heappush(frontier, (new_cost + dist(child.loc, goal_pt), next(tie), nb.index))
        if not found:
            return []

        keys = [goal_key]
        while self.nav_map[keys[-1]].parent is not None:
            keys.append(self.nav_map[keys[-1]].parent)
        path = [self.nav_map[k].loc for k in reversed(keys)]
        goal = (float(goal_loc[0]), float(goal_loc[1]))
        if dist(path[-1], goal) > 1e-9:
            path.append(goal)
        return path
