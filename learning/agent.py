"""
Toboggan - Learning Agent
Ties perception, policy, replay and the Q-network together and runs the
per-tick training loop with its adaptive schedules.
"""

import math
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

import numpy as np

from config import CONFIG
from utils.logger import get_logger
from .actions import Direction, Point, action_from_direction, direction_from_action
from .network import QNetwork
from .perception import RayPerception, RayResult
from .policy import PolicySelector, directed_action
from .rewards import RewardFunction
from .stats import LearningStats
from .storage import Experience, ExperienceStore
from .world_view import WorldView

# Heuristic alignment multipliers for training targets
ALIGNED_MULTIPLIER = 1.25
NEAR_ALIGNED_MULTIPLIER = 1.1
OPPOSITE_MULTIPLIER = 0.7
NEAR_OPPOSITE_MULTIPLIER = 0.8


@dataclass
class TrainingState:
    """Counters and schedule values the agent carries between ticks."""
    learning_rate: float
    frame_counter: int = 0
    learning_frequency: int = 1
    update_counter: int = 0
    frames_since_goal: int = 0
    min_distance_to_goal: float = math.inf
    episode_reward: float = 0.0
    games_since_buffer_save: int = 0
    last_action: int = int(Direction.RIGHT)
    position_history: Deque[Point] = field(default_factory=deque)
    recent_q_values: Deque[float] = field(default_factory=deque)

    def reset_episode(self):
        self.episode_reward = 0.0
        self.frame_counter = 0
        self.frames_since_goal = 0
        self.min_distance_to_goal = math.inf
        self.position_history.clear()


def alignment_multiplier(action: int, optimal: int) -> float:
    """How well an action agrees with the heuristic best action."""
    opposite = (optimal + 4) % 8

    if action == opposite:
        return OPPOSITE_MULTIPLIER
    if action in ((opposite + 1) % 8, (opposite - 1) % 8):
        return NEAR_OPPOSITE_MULTIPLIER
    if action == optimal:
        return ALIGNED_MULTIPLIER
    if action in ((optimal + 1) % 8, (optimal - 1) % 8,
                  (optimal + 2) % 8, (optimal - 2) % 8):
        return NEAR_ALIGNED_MULTIPLIER
    return 1.0


def align_target(target_q: float, action: int, reward: float, optimal: int) -> float:
    """Scale a training target by reward sign and agreement with the heuristic."""
    multiplier = alignment_multiplier(action, optimal)

    if reward > 0:
        target_q *= multiplier
    elif reward < -40.0:
        target_q *= 1.2
    elif reward < 0 and multiplier < 1.0:
        target_q *= multiplier * 0.8

    if reward > 20.0 and action == optimal:
        target_q *= 1.15
    if reward >= 50.0:
        target_q *= 1.2

    return target_q


class TobogganAgent:
    """
    Double-DQN agent for the toboggan.

    The host calls start_episode() with the opening view, then alternates
    get_next_move() and update_after_move() until the view reports game over.
    """

    def __init__(self, config=None, save_manager=None,
                 rng: Optional[random.Random] = None, load: bool = True):
        self.config = config or CONFIG
        self.rng = rng or random.Random(self.config.seed)
        self.np_rng = np.random.default_rng(self.rng.getrandbits(32))
        self.logger = get_logger()
        self.save_manager = save_manager

        self.training_mode = False
        self.state = TrainingState(learning_rate=self.config.initial_learning_rate)

        self.network = self._new_network()
        self.store = ExperienceStore(
            capacity=self.config.replay_capacity,
            batch_size=self.config.batch_size,
            goal_threshold=self.config.goal_reward_threshold,
            crash_threshold=self.config.crash_reward_threshold,
            rng=self.rng,
        )
        self.stats = LearningStats()
        self.stats.exploration_rate = self.config.initial_exploration_rate

        self.policy = PolicySelector(self.config, self.rng)
        self.reward_function = RewardFunction(self.config)
        self.perception = RayPerception()
        self.current_state = np.zeros(self.config.input_size)
        self.view: Optional[WorldView] = None

        if load and self.save_manager is not None:
            self._load_saved()

        self.target_network = self.network.clone()
        self._update_learning_frequency()

    def _new_network(self) -> QNetwork:
        return QNetwork(
            self.config.input_size,
            self.config.hidden_size,
            self.config.output_size,
            learning_rate=self.config.initial_learning_rate,
            momentum=self.config.momentum,
            rng=self.np_rng,
        )

    def _load_saved(self):
        """Restore weights, stats and replay store; weights and stats load together or not at all."""
        weights_loaded = self.save_manager.load_network(self.network)
        stats = self.save_manager.load_stats()
        stats_loaded = stats is not None

        if weights_loaded != stats_loaded:
            self.logger.warning("Only part of the saved state loaded; starting fresh")
            self.network = self._new_network()
            weights_loaded = stats_loaded = False
        elif stats_loaded:
            self.stats = stats

        if weights_loaded:
            self.state.learning_rate = min(
                self.config.initial_learning_rate,
                max(self.config.min_learning_rate, self.network.learning_rate)
            )
            self.network.set_learning_rate(self.state.learning_rate)

        if not stats_loaded:
            self.stats.exploration_rate = self.config.initial_exploration_rate

        self.save_manager.load_buffer(self.store, state_size=self.config.input_size)

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def rays(self) -> List[RayResult]:
        return self.perception.rays

    @property
    def replay_buffer_size(self) -> int:
        return len(self.store)

    @property
    def exploration_rate(self) -> float:
        return self.stats.exploration_rate

    @property
    def learning_rate(self) -> float:
        return self.state.learning_rate

    # =========================================================================
    # EPISODE FLOW
    # =========================================================================

    def start_episode(self, view: WorldView):
        """Prepare for a new game starting from this view."""
        self.state.reset_episode()
        self.reward_function.reset(view)
        self.state.min_distance_to_goal = view.distance_to_goal()
        self.observe(view)

    def observe(self, view: WorldView) -> np.ndarray:
        self.view = view
        self.current_state = self.perception.sense(view)
        return self.current_state

    def get_next_move(self, view: Optional[WorldView] = None) -> Direction:
        """Pick the next direction for the current (or given) view."""
        if view is not None:
            self.observe(view)

        action, q_values = self.policy.select(
            self.current_state, self.view, self.stats.exploration_rate,
            self.state.frames_since_goal, self.network, stuck=self.is_stuck(),
        )
        if q_values is not None:
            self._track_q_values(q_values)

        direction = direction_from_action(action)
        self.state.last_action = action_from_direction(direction)
        return direction

    def update_after_move(self, view: WorldView, collected_goal: bool,
                          hit_obstacle: bool) -> float:
        """
        Learn from the move just made. view is the world after the move.
        Returns the reward given for the move.
        """
        state = self.state
        self._record_position(view.head)

        previous_state = self.current_state
        reward = self.reward_function.calculate(
            view, collected_goal, hit_obstacle, state.frames_since_goal)
        state.episode_reward += reward
        self.stats.total_reward += reward

        self._update_goal_tracking(view, collected_goal)
        self.observe(view)

        experience = Experience.create(
            previous_state, state.last_action, reward, self.current_state, view.game_over)
        self.store.insert(experience, important=collected_goal or hit_obstacle)

        self._process_learning(view, collected_goal)

        if view.game_over:
            self._handle_game_over(view)

        return reward

    def _record_position(self, head: Point):
        history = self.state.position_history
        history.append(head)
        while len(history) > self.config.position_history_size:
            history.popleft()

    def _update_goal_tracking(self, view: WorldView, collected_goal: bool):
        if collected_goal:
            self.state.frames_since_goal = 0
            self.state.min_distance_to_goal = math.inf
        else:
            self.state.frames_since_goal += 1
            self.state.min_distance_to_goal = min(
                self.state.min_distance_to_goal, view.distance_to_goal())

    def _track_q_values(self, q_values: np.ndarray):
        recent = self.state.recent_q_values
        recent.append(float(np.max(q_values)))
        while len(recent) > self.config.q_value_history_size:
            recent.popleft()

    def _process_learning(self, view: WorldView, collected_goal: bool):
        state = self.state
        state.frame_counter += 1

        should_learn = (len(self.store) >= self.config.min_buffer_for_training and
                        state.frame_counter >= state.learning_frequency)
        if should_learn:
            self.learn(view)
            state.frame_counter = 0

            if (self.config.adaptive_learning and
                    self.stats.training_steps % self.config.adjust_every_training_steps == 0):
                self._adjust_learning_parameters()

        self._update_exploration_rate(collected_goal)
        self._update_learning_rate()
        self._update_target_network()

    def _handle_game_over(self, view: WorldView):
        state = self.state
        self.stats.record_game_result(view.score, state.episode_reward)
        self.stats.episode_counter += 1
        self.logger.debug(
            f"Game over: score={view.score} reward={state.episode_reward:.1f} "
            f"buffer={len(self.store)}"
        )

        state.games_since_buffer_save += 1
        if self.training_mode and state.games_since_buffer_save >= self.config.buffer_save_interval_games:
            self._save_buffer()
            state.games_since_buffer_save = 0

        self._update_learning_frequency()
        state.reset_episode()

        if (self.training_mode and
                self.stats.total_games_played % self.config.stats_save_interval_games == 0):
            self._save_network_and_stats()

    # =========================================================================
    # LEARNING
    # =========================================================================

    def learn(self, view: Optional[WorldView] = None) -> Optional[float]:
        """
        One learning pass over a prioritised batch.
        Returns the mean squared error against pre-update predictions.
        """
        batch = self.store.sample_batch()
        view = view or self.view
        if not batch or view is None:
            return None

        optimal = directed_action(view)
        total_loss = 0.0

        for experience in batch:
            target_q = self._target_q(experience)
            target_q = align_target(target_q, experience.action, experience.reward, optimal)

            prediction = self.network.train_single_action(
                experience.state, experience.action, target_q)
            total_loss += (target_q - prediction) ** 2

        average_loss = total_loss / len(batch)
        self.stats.training_steps += 1
        if math.isfinite(average_loss):
            self.stats.average_loss = average_loss
        self.stats.add_loss_value(average_loss)
        self.logger.log_learning(self.stats.training_steps, len(batch), average_loss)
        return average_loss

    def _target_q(self, experience: Experience) -> float:
        """Double-DQN target: online net picks the next action, target net scores it."""
        if experience.done:
            target_q = experience.reward
        else:
            next_q = self.network.forward(experience.next_state)
            best_action = int(np.argmax(next_q))
            target_next = self.target_network.forward(experience.next_state)
            target_q = experience.reward + self.config.discount_factor * target_next[best_action]

        clip = self.config.target_clip
        return float(max(-clip, min(clip, target_q)))

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    def _update_learning_rate(self):
        config = self.config
        if self.state.learning_rate <= config.min_learning_rate:
            return

        decay = config.learning_rate_decay
        if self.stats.recent_average_score(20) > 1.5:
            decay = decay ** 0.6  # Improving, decay slower
        elif self.stats.recent_average_loss(20) > 5.0:
            decay = decay ** 1.05

        self._set_learning_rate(max(self.state.learning_rate * decay, config.min_learning_rate))

    def _set_learning_rate(self, rate: float):
        self.state.learning_rate = rate
        self.network.set_learning_rate(rate)

    def minimum_exploration_rate(self) -> float:
        """Exploration floor, lowered as training matures."""
        config = self.config
        stats = self.stats
        minimum = config.min_exploration_rate

        if stats.total_games_played > 1000:
            progress = (min(stats.total_games_played, 5000) - 1000) / 4000.0
            minimum = config.min_exploration_rate * (1.0 - progress * 0.4)

        if stats.max_score > 5 and stats.recent_average_score(20) > 2.0:
            minimum *= 0.8

        return minimum

    def should_boost_exploration(self) -> bool:
        """True when recent play has stalled and a short burst of exploration may help."""
        stats = self.stats
        games = stats.total_games_played
        rate = stats.exploration_rate
        recent = stats.recent_average_score(20)

        if games > 100 and recent < stats.recent_average_score(50) * 0.7 and rate < 0.4:
            return True
        if games > 300 and recent < 1.0 and rate < 0.3:
            return True
        return games > 500 and recent < 3.0 and rate < 0.25

    def _update_exploration_rate(self, collected_goal: bool):
        stats = self.stats
        minimum = self.minimum_exploration_rate()

        if self.should_boost_exploration():
            boosted = min(stats.exploration_rate * 1.5, self.config.max_boosted_exploration)
            if boosted != stats.exploration_rate:
                self.logger.log_schedule("exploration boost", f"{stats.exploration_rate:.4f} -> {boosted:.4f}")
            stats.exploration_rate = boosted
            return

        if stats.exploration_rate > minimum:
            rate = stats.exploration_rate * self.config.exploration_rate_decay
            if collected_goal:
                rate *= 0.999
            stats.exploration_rate = max(rate, minimum)
        else:
            stats.exploration_rate = minimum

    def _update_target_network(self):
        state = self.state
        state.update_counter += 1

        if state.update_counter % self.config.soft_update_interval == 0:
            tau = self.config.target_tau
            if self.stats.recent_average_score(20) > 1.5:
                tau *= 0.5
            self.network.soft_update(self.target_network, tau)

        if state.update_counter >= self.config.hard_update_frequency:
            self.network.hard_update(self.target_network)
            state.update_counter = 0

            if self.training_mode:
                self._save_network_and_stats()

    def _update_learning_frequency(self):
        stats = self.stats
        state = self.state

        if not self.training_mode:
            state.learning_frequency = 10
            return

        if len(self.store) < self.config.min_buffer_for_training:
            frequency = 5
        elif stats.total_games_played < 500:
            frequency = 1
        elif stats.max_score < 3:
            frequency = 2
        else:
            frequency = 3

        recent = stats.recent_average_score(20)
        if recent > 3.0:
            frequency = min(5, frequency + 1)
        elif recent < 0.5 and stats.total_games_played > 200:
            frequency = max(1, frequency - 1)

        state.learning_frequency = frequency

    def _adjust_learning_parameters(self):
        stats = self.stats
        recent_score = stats.recent_average_score(20)

        # Stuck in a poor optimum after showing it can score
        if stats.total_games_played > 500 and recent_score < 0.5 and stats.max_score > 2:
            stats.exploration_rate = max(stats.exploration_rate, 0.3)
            self._set_learning_rate(max(self.state.learning_rate,
                                        self.config.initial_learning_rate * 0.5))
            self.logger.log_schedule("stuck", "raised exploration and learning rate")

        if stats.recent_average_loss(20) > 10.0:
            self._set_learning_rate(max(self.state.learning_rate * 0.8,
                                        self.config.min_learning_rate))
            self.logger.log_schedule("unstable loss", f"learning rate {self.state.learning_rate:.6f}")

        if self.q_values_inflated():
            self.network.hard_update(self.target_network)
            self.state.update_counter = 0
            self.logger.log_schedule("q inflation", "target network reset")

        if stats.repair_loss_spikes():
            self.logger.log_schedule("loss spikes", "smoothed recent loss history")

    def q_values_inflated(self) -> bool:
        recent = self.state.recent_q_values
        if not recent:
            return False
        return sum(recent) / len(recent) > self.config.q_inflation_threshold

    # =========================================================================
    # STUCK DETECTION
    # =========================================================================

    def is_stuck(self) -> bool:
        """Looping in a small area, oscillating, or drifting away from the flag."""
        history = list(self.state.position_history)
        if len(history) < self.config.position_history_size:
            return False

        if len(set(history)) <= 3:
            return True

        if (_has_repeating_pattern(history, 2, 4) or
                _has_repeating_pattern(history, 3, 3) or
                _has_repeating_pattern(history, 4, 3)):
            return True

        if self.view is None:
            return False
        return (self.state.frames_since_goal > 60 and
                self.view.distance_to_goal() > self.state.min_distance_to_goal * 1.3)

    # =========================================================================
    # MODES AND PERSISTENCE
    # =========================================================================

    def set_training_mode(self, training: bool):
        self.training_mode = training
        if training:
            self.save_all()
        self._update_learning_frequency()

    def reset_network(self):
        """Forget everything learned and delete saved files."""
        self._set_learning_rate(self.config.initial_learning_rate)
        self.network = self._new_network()
        self.target_network = self.network.clone()

        self.store.clear()
        self.stats = LearningStats()
        self.stats.exploration_rate = self.config.initial_exploration_rate

        self.state = TrainingState(learning_rate=self.config.initial_learning_rate)
        self._update_learning_frequency()

        if self.save_manager is not None:
            self.save_manager.delete_all()
        self.logger.info("Agent reset to a fresh network")

    def save_all(self):
        self._save_network_and_stats()
        self._save_buffer()

    def _save_network_and_stats(self):
        if self.save_manager is None:
            return
        self.save_manager.save_network(self.network)
        self.save_manager.save_stats(self.stats)

    def _save_buffer(self):
        if self.save_manager is None:
            return
        self.save_manager.save_buffer(self.store)


def _has_repeating_pattern(positions: List[Point], length: int, repetitions: int) -> bool:
    """True if the last `length` positions repeat `repetitions` times in a row."""
    count = len(positions)
    if count < length * repetitions:
        return False

    tail = positions[count - length:]
    for rep in range(1, repetitions):
        start = count - length * (rep + 1)
        if positions[start:start + length] != tail:
            return False
    return True
