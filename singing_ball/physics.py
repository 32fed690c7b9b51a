import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Tuple

import numpy as np

from .config import SimulationConfig, TuningParameters

log = logging.getLogger(__name__)

Point = Tuple[float, float]


def reflect(vel: np.ndarray, normal: np.ndarray) -> np.ndarray:
    return vel - 2.0 * np.dot(vel, normal) * normal


@dataclass(frozen=True)
class BoundaryGeometry:
    cx: float
    cy: float
    radius: float

    @property
    def center(self) -> np.ndarray:
        return np.array([self.cx, self.cy], dtype=np.float64)

    @classmethod
    def for_surface(cls, width: int, height: int, inset: float) -> "BoundaryGeometry":
        return cls(width / 2.0, height / 2.0, min(width, height) / 2.0 - inset)


@dataclass
class BallState:
    center: np.ndarray
    velocity: np.ndarray
    radius: float
    max_radius: float

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))


class PhysicsState:
    """Ball inside a ring: one semi-implicit step per tick, no I/O.

    Collision listeners are called synchronously, in collision order, from
    inside update().
    """

    def __init__(self, width: int, height: int, tuning: Optional[TuningParameters] = None,
                 config: Optional[SimulationConfig] = None):
        self.config = config or SimulationConfig()
        self.tuning = tuning or TuningParameters()
        self.width = int(width)
        self.height = int(height)
        self.boundary = BoundaryGeometry.for_surface(self.width, self.height, self.config.boundary_inset)
        max_radius = self.boundary.radius - self.config.max_radius_inset
        if max_radius <= self.config.initial_radius:
            raise ValueError(
                f"Surface {self.width}x{self.height} leaves no room for the ball "
                f"(ring radius {self.boundary.radius:.1f})"
            )
        self.trail: Deque[Point] = deque(maxlen=self.config.trail_length)
        self.collision_marks: List[Point] = []
        self._listeners: List[Callable[[], None]] = []
        self.ball = BallState(np.zeros(2), np.zeros(2), self.config.initial_radius, max_radius)
        self.reset()

    @property
    def max_radius(self) -> float:
        return self.ball.max_radius

    def add_collision_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_collision_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        cfg = self.config
        self.ball.radius = float(cfg.initial_radius)
        self.ball.center = np.array(
            [self.width / cfg.start_divisors[0], self.height / cfg.start_divisors[1]], dtype=np.float64)
        self.ball.velocity = np.array(cfg.initial_velocity, dtype=np.float64)
        self.trail.clear()
        self.collision_marks = []

    def drag_to(self, x: float, y: float) -> None:
        """External override: place the ball and kill its velocity."""
        self.ball.center = np.array([x, y], dtype=np.float64)
        self.ball.velocity = np.zeros(2, dtype=np.float64)

    def contains_point(self, x: float, y: float) -> bool:
        d = math.hypot(x - self.ball.center[0], y - self.ball.center[1])
        return d <= self.ball.radius

    def update(self) -> bool:
        """Advance one tick. Returns True when the ball hit the ring."""
        ball = self.ball
        t = self.tuning

        self.trail.append((float(ball.center[0]), float(ball.center[1])))

        ball.velocity[1] += t.gravity
        ball.velocity *= t.velocity_decay
        ball.center = ball.center + ball.velocity

        c = self.boundary.center
        d_vec = ball.center - c
        dist = float(np.linalg.norm(d_vec))
        if dist < self.boundary.radius - ball.radius:
            return False

        # Ball parked exactly on the ring center has no outward direction
        if dist > 0.0:
            n = d_vec / dist
        else:
            n = np.array([1.0, 0.0], dtype=np.float64)

        ball.velocity = reflect(ball.velocity, n) * self.config.restitution

        if ball.radius < ball.max_radius:
            ball.radius = min(ball.radius * t.growth_factor, ball.max_radius)

        ball.velocity = ball.velocity * t.velocity_boost

        speed = ball.speed
        if speed < self.config.min_speed:
            if speed > 0.0:
                ball.velocity = ball.velocity * (self.config.min_speed / speed)
            else:
                ball.velocity = -n * self.config.min_speed

        angle = math.atan2(float(n[1]), float(n[0]))
        ca, sa = math.cos(angle), math.sin(angle)
        r = self.boundary.radius
        self.collision_marks.append((self.boundary.cx + r * ca, self.boundary.cy + r * sa))

        # Put the ball back just inside the ring so it can't stick or tunnel out
        inner = r - ball.radius
        ball.center = np.array([self.boundary.cx + inner * ca, self.boundary.cy + inner * sa], dtype=np.float64)

        for listener in list(self._listeners):
            listener()
        return True
