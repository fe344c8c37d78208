"""
Toboggan - Learning Policy
Epsilon-greedy action selection with a flag-directed exploration
heuristic and softmax sampling over Q-values.
"""

import math
import random
from typing import List, Optional, Tuple, TYPE_CHECKING

import numpy as np

from .actions import ACTION_COUNT, Direction, circular_deviation, next_position
from .world_view import WorldView, distance

if TYPE_CHECKING:
    from .network import QNetwork

OUT_OF_BOUNDS_DANGER = 1000.0
PROXIMITY_RADIUS = 2.0
PROXIMITY_WEIGHT = 20.0


def softmax(values, temperature: float = 1.0) -> np.ndarray:
    """
    Compute softmax probabilities for action values.
    Higher temperature = more exploration.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return values

    # Prevent overflow by subtracting max
    scaled = (values - np.max(values)) / max(0.01, temperature)
    exp_values = np.exp(scaled)
    total = float(np.sum(exp_values))

    if not math.isfinite(total) or total <= 0.0:
        return np.full(values.size, 1.0 / values.size)
    return exp_values / total


def sample_from_distribution(probabilities, rng: random.Random) -> int:
    """Cumulative draw from a probability vector."""
    r = rng.random()
    cumulative = 0.0

    for index, probability in enumerate(probabilities):
        cumulative += probability
        if r < cumulative:
            return index

    # Fallback
    return len(probabilities) - 1


def optimal_direction(head, goal) -> Direction:
    """Straight-line compass direction from head toward goal."""
    delta_x = goal[0] - head[0]
    delta_y = goal[1] - head[1]

    if delta_x == 0:
        return Direction.UP if delta_y < 0 else Direction.DOWN
    if delta_y == 0:
        return Direction.RIGHT if delta_x > 0 else Direction.LEFT
    if delta_x > 0:
        return Direction.UP_RIGHT if delta_y < 0 else Direction.DOWN_RIGHT
    return Direction.UP_LEFT if delta_y < 0 else Direction.DOWN_LEFT


def is_safe_direction(view: WorldView, direction: Direction) -> bool:
    """True when one step in this direction hits no wall, obstacle or body."""
    target = next_position(view.head, direction)
    return (view.in_bounds(target)
            and not view.is_obstacle(target)
            and not view.is_body(target))


def find_safe_directions(view: WorldView) -> List[Direction]:
    return [direction for direction in Direction if is_safe_direction(view, direction)]


def danger_score(view: WorldView, direction: Direction) -> float:
    """Distance to the flag after the step plus penalties for nearby hazards."""
    target = next_position(view.head, direction)
    if not view.in_bounds(target):
        return OUT_OF_BOUNDS_DANGER

    score = distance(target, view.goal)
    for hazard in view.obstacles + view.body:
        hazard_distance = distance(target, hazard)
        if hazard_distance < PROXIMITY_RADIUS:
            score += (PROXIMITY_RADIUS - hazard_distance) * PROXIMITY_WEIGHT
    return score


def least_dangerous_direction(view: WorldView) -> Direction:
    """Direction with the lowest danger score. Always returns a direction."""
    return min(Direction, key=lambda direction: danger_score(view, direction))


def directed_action(view: WorldView) -> int:
    """
    Heuristic best action toward the flag.

    Used both to steer exploration and to weight training targets, so the
    two always agree on what "toward the flag" means.
    """
    optimal = optimal_direction(view.head, view.goal)
    if is_safe_direction(view, optimal):
        return int(optimal)

    safe = find_safe_directions(view)
    if safe:
        best = min(safe, key=lambda d: (circular_deviation(int(d), int(optimal)), int(d)))
        return int(best)

    return int(least_dangerous_direction(view))


class PolicySelector:
    """Chooses an action each tick: explore (directed or random) or exploit."""

    def __init__(self, config, rng: Optional[random.Random] = None):
        self.temperature = config.softmax_temperature
        self.directed_move_threshold = config.directed_move_threshold
        self.directed_move_probability = config.directed_move_probability
        self.directed_jitter_probability = config.directed_jitter_probability
        self.rng = rng or random.Random()

    def select(self, observation, view: WorldView, exploration_rate: float,
               frames_since_goal: int,
               network: 'QNetwork', stuck: bool = False) -> Tuple[int, Optional[np.ndarray]]:
        """
        Returns (action, q_values). q_values is None for exploratory moves.
        A stuck agent steers toward the flag without waiting for the threshold.
        """
        if self.rng.random() < exploration_rate:
            return self.explore(view, frames_since_goal, stuck), None
        return self.exploit(observation, network)

    def explore(self, view: WorldView, frames_since_goal: int, stuck: bool = False) -> int:
        needs_direction = stuck or frames_since_goal > self.directed_move_threshold
        if needs_direction and self.rng.random() < self.directed_move_probability:
            action = directed_action(view)
            if self.rng.random() < self.directed_jitter_probability:
                variance = self.rng.randint(-1, 1)
                action = (action + variance) % ACTION_COUNT
            return action

        # Pure random exploration
        return self.rng.randrange(ACTION_COUNT)

    def exploit(self, observation, network: 'QNetwork') -> Tuple[int, np.ndarray]:
        q_values = network.forward(observation)
        probabilities = softmax(q_values, self.temperature)
        return sample_from_distribution(probabilities, self.rng), q_values
