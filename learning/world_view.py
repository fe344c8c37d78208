"""
Toboggan - World View
Read-only snapshot of what the agent needs from the world each tick.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .actions import Point


@dataclass(frozen=True)
class WorldView:
    """
    Snapshot of the world as seen by the agent.

    segments is ordered head first; body excludes the head.
    """
    segments: Tuple[Point, ...]
    goal: Point
    obstacles: Tuple[Point, ...]
    grid_width: int
    grid_height: int
    game_over: bool = False
    score: int = 0
    _obstacle_set: frozenset = field(init=False, repr=False, compare=False)
    _body_set: frozenset = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        segments = tuple(tuple(p) for p in self.segments)
        obstacles = tuple(tuple(p) for p in self.obstacles)
        if not segments:
            raise ValueError("WorldView needs at least one segment (the head)")
        object.__setattr__(self, 'segments', segments)
        object.__setattr__(self, 'obstacles', obstacles)
        object.__setattr__(self, 'goal', tuple(self.goal))
        object.__setattr__(self, '_obstacle_set', frozenset(obstacles))
        object.__setattr__(self, '_body_set', frozenset(segments[1:]))

    @property
    def head(self) -> Point:
        return self.segments[0]

    @property
    def body(self) -> Tuple[Point, ...]:
        return self.segments[1:]

    @property
    def max_range(self) -> int:
        return max(self.grid_width, self.grid_height)

    def in_bounds(self, point: Point) -> bool:
        return 0 <= point[0] < self.grid_width and 0 <= point[1] < self.grid_height

    def is_obstacle(self, point: Point) -> bool:
        return point in self._obstacle_set

    def is_body(self, point: Point) -> bool:
        return point in self._body_set

    def distance_to_goal(self, point: Optional[Point] = None) -> float:
        return distance(self.head if point is None else point, self.goal)


def distance(a: Point, b: Point) -> float:
    """Euclidean distance between two cells."""
    return math.hypot(a[0] - b[0], a[1] - b[1])
