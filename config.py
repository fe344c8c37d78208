"""
Toboggan - Configuration
All agent, world and logging parameters in one place.
"""

from dataclasses import dataclass
from typing import Optional
import random


@dataclass
class AgentConfig:
    """Learning agent parameters."""

    # Network structure (8 rays x 4 channels in, 8 compass actions out)
    input_size: int = 32
    hidden_size: int = 128
    output_size: int = 8

    # Learning rate schedule
    initial_learning_rate: float = 0.0005
    learning_rate_decay: float = 0.9998
    min_learning_rate: float = 0.0001
    momentum: float = 0.2
    discount_factor: float = 0.95

    # Exploration schedule
    initial_exploration_rate: float = 0.99
    exploration_rate_decay: float = 0.9998
    min_exploration_rate: float = 0.05
    max_boosted_exploration: float = 0.2

    # Target network
    target_tau: float = 0.05
    soft_update_interval: int = 3
    hard_update_frequency: int = 250

    # Replay
    replay_capacity: int = 20000
    min_buffer_for_training: int = 2000
    batch_size: int = 192
    goal_reward_threshold: float = 50.0  # Batch slot for flag collections
    crash_reward_threshold: float = -15.0  # Batch slot for crashes

    # Target clipping
    target_clip: float = 100.0

    # Rewards
    reward_goal: float = 75.0
    penalty_obstacle: float = -50.0
    penalty_wall: float = -50.0
    reward_closer_scale: float = 5.0
    penalty_farther_scale: float = 3.0
    time_penalty: float = -0.3
    time_penalty_after_frames: int = 15

    # Policy
    softmax_temperature: float = 2.0
    directed_move_threshold: int = 10  # Frames without a flag before steering
    directed_move_probability: float = 0.85
    directed_jitter_probability: float = 0.05

    # Adaptive tuning
    adaptive_learning: bool = True
    adjust_every_training_steps: int = 50
    position_history_size: int = 15
    q_value_history_size: int = 100
    q_inflation_threshold: float = 50.0

    # Persistence
    save_directory: str = "saves"
    weights_filename: str = "network_weights.json"
    stats_filename: str = "learning_stats.json"
    buffer_filename: str = "replay_buffer.npz"
    buffer_save_interval_games: int = 50
    stats_save_interval_games: int = 10

    # Random seed (None = random)
    seed: Optional[int] = None

    def get_seed(self) -> int:
        """Get or generate random seed."""
        if self.seed is None:
            self.seed = random.randint(0, 2**32 - 1)
        return self.seed


@dataclass
class WorldConfig:
    """Headless world parameters."""

    grid_width: int = 30
    grid_height: int = 30
    obstacle_count: int = 40
    initial_length: int = 3
    starvation_frames: int = 400  # Frames without a flag before the game ends
    flag_placement_attempts: int = 100


@dataclass
class LoggingConfig:
    """Log output parameters."""

    log_directory: str = "logs"
    log_to_file: bool = True
    log_to_console: bool = True
    episode_summary_interval: int = 20  # Games between summary lines


# Global config instances
CONFIG = AgentConfig()
WORLD_CONFIG = WorldConfig()
LOGGING_CONFIG = LoggingConfig()
