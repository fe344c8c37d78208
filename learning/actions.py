"""
Toboggan - Actions
The eight compass directions and their mapping to network output indices.
"""

from enum import IntEnum
from typing import Tuple

Point = Tuple[int, int]


class Direction(IntEnum):
    """Movement directions, clockwise from Up. y grows downward."""
    UP = 0
    UP_RIGHT = 1
    RIGHT = 2
    DOWN_RIGHT = 3
    DOWN = 4
    DOWN_LEFT = 5
    LEFT = 6
    UP_LEFT = 7

    @property
    def delta(self) -> Point:
        return DIRECTION_DELTAS[self]

    @property
    def opposite(self) -> 'Direction':
        return Direction((self.value + 4) % ACTION_COUNT)


DIRECTION_DELTAS = {
    Direction.UP: (0, -1),
    Direction.UP_RIGHT: (1, -1),
    Direction.RIGHT: (1, 0),
    Direction.DOWN_RIGHT: (1, 1),
    Direction.DOWN: (0, 1),
    Direction.DOWN_LEFT: (-1, 1),
    Direction.LEFT: (-1, 0),
    Direction.UP_LEFT: (-1, -1),
}

ACTION_COUNT = len(Direction)


def direction_from_action(action: int) -> Direction:
    """Map a network output index to a direction. Out-of-range maps to RIGHT."""
    if 0 <= action < ACTION_COUNT:
        return Direction(action)
    return Direction.RIGHT


def action_from_direction(direction: Direction) -> int:
    """Map a direction to its network output index."""
    return int(direction)


def next_position(point: Point, direction: Direction) -> Point:
    """Cell reached by taking one step in a direction."""
    dx, dy = DIRECTION_DELTAS[direction]
    return (point[0] + dx, point[1] + dy)


def circular_deviation(a: int, b: int) -> int:
    """Number of 45-degree steps between two actions (0-4)."""
    diff = abs(a - b) % ACTION_COUNT
    return min(diff, ACTION_COUNT - diff)
