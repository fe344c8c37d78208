"""
Toboggan - Reward System
Scores each move: collisions, flag collection, and distance shaping
toward the flag.
"""

from typing import Optional

from .world_view import WorldView


def on_boundary(view: WorldView) -> bool:
    """True when the head sits on the outermost ring of cells."""
    x, y = view.head
    return (x <= 0 or x >= view.grid_width - 1 or
            y <= 0 or y >= view.grid_height - 1)


class RewardFunction:
    """
    Stateful reward calculator.

    Keeps the distance to the flag from the previous tick so that
    movement toward the flag is rewarded and movement away is penalised.
    """

    def __init__(self, config):
        self.config = config
        self.previous_distance: Optional[float] = None

    def reset(self, view: WorldView):
        """Anchor the reference distance at the start of an episode."""
        self.previous_distance = view.distance_to_goal()

    def calculate(self, view: WorldView, collected_goal: bool, hit_obstacle: bool,
                  frames_since_goal: int) -> float:
        """
        Reward for the move that produced this view.

        frames_since_goal is the count before this move is accounted for.
        """
        config = self.config
        reward = 0.0

        if hit_obstacle:
            reward += config.penalty_obstacle

        if on_boundary(view):
            reward += config.penalty_wall

        current_distance = view.distance_to_goal()

        if collected_goal:
            reward += config.reward_goal
        else:
            previous = self.previous_distance
            if previous is None:
                previous = current_distance

            if current_distance < previous:
                reward += config.reward_closer_scale * (previous - current_distance)
            elif current_distance > previous:
                reward -= config.penalty_farther_scale * (current_distance - previous)

            # Small time penalty to encourage collecting
            if frames_since_goal > config.time_penalty_after_frames:
                reward += config.time_penalty

        # Measured against the flag as it stands after any relocation
        self.previous_distance = current_distance
        return reward
