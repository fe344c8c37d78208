"""
Toboggan - Ray Perception
Casts eight rays from the toboggan head and encodes what they hit
into the fixed-size observation vector fed to the network.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Tuple

import numpy as np

from .actions import Direction, Point
from .world_view import WorldView

CHANNELS_PER_RAY = 4
OBSERVATION_SIZE = len(Direction) * CHANNELS_PER_RAY


class RayHitType(Enum):
    """What a ray stopped on."""
    NONE = auto()
    WALL = auto()
    BODY = auto()
    FLAG = auto()
    OBSTACLE = auto()


@dataclass
class RayResult:
    """
    Outcome of a single ray cast.

    Distances are step / max_range, 1.0 when nothing of that kind was found.
    """
    start: Point
    end: Point
    direction: Direction
    hit_type: RayHitType = RayHitType.NONE
    distance_to_wall: float = 1.0
    distance_to_body: float = 1.0
    distance_to_flag: float = 1.0
    distance_to_obstacle: float = 1.0
    wall_found: bool = False
    body_found: bool = False
    flag_found: bool = False
    obstacle_found: bool = False

    @property
    def distance(self) -> float:
        """Closest hit of any kind, for visualisation."""
        return min(self.distance_to_wall, self.distance_to_body,
                   self.distance_to_flag, self.distance_to_obstacle)

    @property
    def finished(self) -> bool:
        return (self.wall_found or self.body_found
                or (self.obstacle_found and not self.flag_found))

    def flag_visibility(self) -> float:
        """
        Visibility of the flag along this ray: 0 when not found or when a
        wall, body or obstacle sits at an equal or shorter distance.
        """
        if not self.flag_found:
            return 0.0

        flag = self.distance_to_flag
        hidden = (
            (self.body_found and self.distance_to_body <= flag) or
            (self.obstacle_found and self.distance_to_obstacle <= flag) or
            (self.wall_found and self.distance_to_wall <= flag)
        )
        return 0.0 if hidden else 1.0 - flag

    def channels(self) -> Tuple[float, float, float, float]:
        """(wall, body, flag visibility, obstacle), larger means closer."""
        return (
            1.0 - self.distance_to_wall,
            1.0 - self.distance_to_body,
            self.flag_visibility(),
            1.0 - self.distance_to_obstacle,
        )


def _bresenham_steps(start: Point, direction: Direction, max_range: int):
    """Yield (step, cell) along a direction using integer error stepping."""
    x, y = start
    ddx, ddy = direction.delta
    dx, dy = abs(ddx), abs(ddy)
    sx = 1 if ddx > 0 else -1
    sy = 1 if ddy > 0 else -1
    err = dx - dy

    for step in range(1, max_range + 1):
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x += sx
        if e2 < dx:
            err += dx
            y += sy
        yield step, (x, y)


def cast_ray(view: WorldView, direction: Direction) -> RayResult:
    """Walk one ray until it terminates or leaves sensing range."""
    max_range = view.max_range
    head = view.head
    goal = view.goal
    result = RayResult(start=head, end=head, direction=direction)

    for step, cell in _bresenham_steps(head, direction, max_range):
        distance = step / max_range

        if not view.in_bounds(cell):
            result.distance_to_wall = distance
            result.wall_found = True
            result.end = (
                max(0, min(cell[0], view.grid_width - 1)),
                max(0, min(cell[1], view.grid_height - 1)),
            )
            result.hit_type = RayHitType.WALL
            break

        if view.is_body(cell):
            result.distance_to_body = distance
            result.body_found = True
            result.end = cell
            result.hit_type = RayHitType.BODY
            if cell == goal and not result.flag_found:
                result.distance_to_flag = distance
                result.flag_found = True
            break

        if not result.obstacle_found and view.is_obstacle(cell):
            result.distance_to_obstacle = distance
            result.obstacle_found = True
            if not result.body_found:
                result.end = cell
                result.hit_type = RayHitType.OBSTACLE
            if cell == goal and not result.flag_found:
                result.distance_to_flag = distance
                result.flag_found = True
            if result.finished:
                break
            continue

        if not result.flag_found and cell == goal:
            result.distance_to_flag = distance
            result.flag_found = True
            if result.hit_type == RayHitType.NONE:
                result.end = cell
                result.hit_type = RayHitType.FLAG

    return result


def cast_rays(view: WorldView) -> Tuple[np.ndarray, List[RayResult]]:
    """Cast all eight rays and build the observation vector."""
    observation = np.zeros(OBSERVATION_SIZE, dtype=np.float64)
    rays = []

    for direction in Direction:
        ray = cast_ray(view, direction)
        base = int(direction) * CHANNELS_PER_RAY
        observation[base:base + CHANNELS_PER_RAY] = ray.channels()
        rays.append(ray)

    return observation, rays


class RayPerception:
    """Keeps the latest observation and rays for the agent and for display."""

    def __init__(self):
        self.observation = np.zeros(OBSERVATION_SIZE, dtype=np.float64)
        self.rays: List[RayResult] = []

    def sense(self, view: WorldView) -> np.ndarray:
        """Recompute the observation from a world snapshot."""
        self.observation, self.rays = cast_rays(view)
        return self.observation.copy()
