import random
from typing import List, NamedTuple, Optional, Set

from config import WORLD_CONFIG
from learning.actions import Direction, Point, next_position
from learning.world_view import WorldView


class StepOutcome(NamedTuple):
    collected_goal: bool
    hit_obstacle: bool  # Any collision: wall, obstacle or own body
    game_over: bool


class TobogganSim:
    """Headless grid world: a toboggan chasing flags between fixed obstacles."""

    def __init__(self, config=None, rng: Optional[random.Random] = None):
        self.config = config or WORLD_CONFIG
        self.grid_w = self.config.grid_width
        self.grid_h = self.config.grid_height
        self.rng = rng or random.Random()

        self.reset()

    def reset(self):
        # Toboggan starts in the middle, body trailing left
        center_x, center_y = self.grid_w // 2, self.grid_h // 2
        self.segments: List[Point] = [
            (center_x - i, center_y) for i in range(self.config.initial_length)
        ]
        self.direction = Direction.RIGHT
        self.score = 0
        self.steps = 0
        self.frames_since_goal = 0
        self.game_over = False

        self.obstacles: List[Point] = []
        self._place_obstacles()
        self.goal: Point = self.segments[0]
        self._relocate_goal()

    @property
    def head(self) -> Point:
        return self.segments[0]

    def _place_obstacles(self):
        start_row = self.segments[0][1]
        occupied: Set[Point] = set(self.segments)
        attempts = 0
        max_attempts = self.config.obstacle_count * 20

        while len(self.obstacles) < self.config.obstacle_count and attempts < max_attempts:
            attempts += 1
            cell = (self.rng.randrange(self.grid_w), self.rng.randrange(self.grid_h))
            # Keep the starting row clear so the first moves are survivable
            if cell[1] == start_row or cell in occupied:
                continue
            self.obstacles.append(cell)
            occupied.add(cell)

    def _relocate_goal(self):
        blocked = set(self.segments) | set(self.obstacles)

        for _ in range(self.config.flag_placement_attempts):
            cell = (self.rng.randint(1, self.grid_w - 2), self.rng.randint(1, self.grid_h - 2))
            if cell not in blocked:
                self.goal = cell
                return

        # Crowded grid: take the first free interior cell
        for y in range(1, self.grid_h - 1):
            for x in range(1, self.grid_w - 1):
                if (x, y) not in blocked:
                    self.goal = (x, y)
                    return

    def step(self, direction: Direction) -> StepOutcome:
        """Advance one tick in the requested direction."""
        if self.game_over:
            return StepOutcome(False, False, True)

        # Ignore 180 degree turns
        if direction != self.direction.opposite:
            self.direction = direction

        new_head = next_position(self.head, self.direction)

        collided = (
            not (0 <= new_head[0] < self.grid_w and 0 <= new_head[1] < self.grid_h)
            or new_head in self.obstacles
            or new_head in self.segments[1:]
        )
        if collided:
            self.game_over = True
            return StepOutcome(False, True, True)

        self.segments.insert(0, new_head)
        self.steps += 1

        collected = new_head == self.goal
        if collected:
            self.score += 1
            self.frames_since_goal = 0
            self._relocate_goal()  # Body keeps its tail, growing by one
        else:
            self.segments.pop()
            self.frames_since_goal += 1

        if self.frames_since_goal > self.config.starvation_frames:
            self.game_over = True

        return StepOutcome(collected, False, self.game_over)

    def view(self) -> WorldView:
        return WorldView(
            segments=tuple(self.segments),
            goal=self.goal,
            obstacles=tuple(self.obstacles),
            grid_width=self.grid_w,
            grid_height=self.grid_h,
            game_over=self.game_over,
            score=self.score,
        )
