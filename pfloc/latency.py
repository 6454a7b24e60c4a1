# pfloc/latency.py
"""
Forward-predicts the robot pose across actuation and sensing delay.

Commands issued after the last observation was taken have not shown up in
the localization estimate yet; integrating them on top of the estimate gives
the pose the robot will actually be at when the next command lands.
"""

from __future__ import annotations

import math
import time
from collections import deque
from typing import Callable, Deque, Tuple

from .geom import Vec2, wrap_angle


class LatencyCompensator:
    def __init__(self, actuation_delay: float, observation_delay: float, delta_t: float,
                 clock: Callable[[], float] = time.monotonic):
        self.actuation_delay = float(actuation_delay)
        self.observation_delay = float(observation_delay)
        self.system_delay = self.actuation_delay + self.observation_delay
        self.delta_t = float(delta_t)
        self.clock = clock
        # (x_dot, y_dot, omega, timestamp), base-link velocities
        self.recorded_inputs: Deque[Tuple[float, float, float, float]] = deque()
        self.last_observation_time = self.clock()

    @classmethod
    def from_config(cls, latency: dict, clock: Callable[[], float] = time.monotonic) -> "LatencyCompensator":
        """Build from a flattened latency config section."""
        return cls(float(latency.get("actuation_delay", 0.1)),
                   float(latency.get("observation_delay", 0.05)),
                   float(latency.get("delta_t", 0.05)),
                   clock=clock)

    def record_new_input(self, x_dot: float, y_dot: float, omega: float) -> None:
        self.recorded_inputs.append((float(x_dot), float(y_dot), float(omega), self.clock()))

    def record_observation(self) -> None:
        """Mark that a sensor state just arrived; it reflects the world observation_delay ago."""
        self.last_observation_time = self.clock() - self.observation_delay

    def _prune(self) -> None:
        # Commands issued before this had already taken effect when the
        # last observation was captured.
        cutoff = self.last_observation_time - self.actuation_delay
        while self.recorded_inputs and self.recorded_inputs[0][3] < cutoff:
            self.recorded_inputs.popleft()

    def predicted_state(self, loc: Vec2, theta: float) -> Tuple[float, float, float]:
        """Integrate pending commands on top of (loc, theta); returns (x, y, theta)."""
        self._prune()
        x, y, th = float(loc[0]), float(loc[1]), float(theta)
        dt = self.delta_t
        for x_dot, y_dot, omega, _ in self.recorded_inputs:
            c, s = math.cos(th), math.sin(th)
            x += (c * x_dot - s * y_dot) * dt
            y += (s * x_dot + c * y_dot) * dt
            th += omega * dt
        return (x, y, wrap_angle(th))
