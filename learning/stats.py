"""
Toboggan - Learning Statistics
Tracks training progress and smooths the noisy per-batch loss signal
that drives the adaptive schedules.
"""

import math
from datetime import datetime
from typing import List, Optional

MIN_STORED_LOSS = 0.0001
MAX_STORED_LOSS = 500.0
HISTORY_LIMIT = 1000
RECENT_SCORES_LIMIT = 50
PERSISTED_TAIL = 100

# Jumps between these bands are damped instead of smoothed
LOW_LOSS = 0.1
HIGH_LOSS = 10.0


def _clamp_loss(loss: float) -> float:
    return min(max(MIN_STORED_LOSS, loss), MAX_STORED_LOSS)


def _smoothing_factor(ratio: float) -> float:
    if ratio > 5.0 or ratio < 0.2:
        return 0.05
    if ratio > 2.0 or ratio < 0.5:
        return 0.1
    return 0.2


class LearningStats:
    """Counters, histories and derived averages for one training run."""

    def __init__(self):
        self.training_steps = 0
        self.total_reward = 0.0
        self.episode_counter = 0
        self.average_loss = 0.0
        self.exploration_rate = 0.99
        self.max_score = 0
        self.total_games_played = 0
        self.accumulated_reward = 0.0
        self.last_episode_score = 0
        self.recent_games_with_score = 0

        self.reward_history: List[float] = []
        self.loss_history: List[float] = []
        self.score_history: List[int] = []
        self.recent_scores: List[int] = []

        self.min_loss = math.inf
        self.max_loss = -math.inf
        self.training_start_time = datetime.now()

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_game_result(self, score: int, episode_reward: float):
        self.total_games_played += 1
        self.max_score = max(self.max_score, score)
        self.last_episode_score = score

        self.score_history.append(score)
        if math.isfinite(episode_reward):
            self.accumulated_reward += episode_reward
            self.reward_history.append(episode_reward)

        self.recent_scores.append(score)
        if len(self.recent_scores) > RECENT_SCORES_LIMIT:
            self.recent_scores.pop(0)

        if score > 0:
            self.recent_games_with_score += 1

        if len(self.score_history) > HISTORY_LIMIT:
            self.score_history.pop(0)
        if len(self.reward_history) > HISTORY_LIMIT:
            self.reward_history.pop(0)

    def add_loss_value(self, loss: float):
        """
        Append a loss with magnitude-aware smoothing.

        Non-finite values are ignored. Large swings move the stored value
        only slightly so a single bad batch does not dominate the history.
        """
        if not math.isfinite(loss):
            return

        loss = _clamp_loss(loss)

        if self.loss_history:
            previous = self.loss_history[-1]
            if previous < LOW_LOSS and loss > HIGH_LOSS:
                loss = previous * 3.0
            elif previous > HIGH_LOSS and loss < LOW_LOSS:
                loss = previous / 3.0
            else:
                factor = _smoothing_factor(loss / previous)
                loss = factor * loss + (1.0 - factor) * previous

        loss = _clamp_loss(loss)
        self.loss_history.append(loss)

        self.min_loss = min(self.min_loss, loss)
        self.max_loss = max(self.max_loss, loss)

        if len(self.loss_history) > HISTORY_LIMIT:
            self.loss_history.pop(0)

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    def recent_average_score(self, count: int = 20) -> float:
        if not self.score_history:
            return 0.0
        recent = self.score_history[-count:]
        return sum(recent) / len(recent)

    def recent_average_loss(self, count: int = 50) -> float:
        """Trimmed mean of recent losses: 10% (at least one) dropped from each end."""
        if not self.loss_history:
            return 0.0

        valid = sorted(loss for loss in self.loss_history[-count:]
                       if math.isfinite(loss) and loss <= MAX_STORED_LOSS)
        if not valid:
            return 0.0

        trim = max(1, len(valid) // 10)
        trimmed = valid[trim:len(valid) - trim]
        values = trimmed if trimmed else valid
        return min(sum(values) / len(values), MAX_STORED_LOSS)

    def normalized_loss(self) -> float:
        """Recent loss placed on a log scale between the min and max seen, in [0, 1]."""
        if not self.loss_history:
            return 0.0

        if (not math.isfinite(self.min_loss) or not math.isfinite(self.max_loss)
                or self.min_loss >= self.max_loss):
            return 0.5

        log_min = math.log10(max(0.001, self.min_loss))
        log_max = math.log10(max(0.01, self.max_loss))
        log_current = math.log10(max(0.001, self.recent_average_loss(10)))

        if log_max <= log_min:
            return 0.5

        normalized = (log_current - log_min) / (log_max - log_min)
        return max(0.0, min(1.0, normalized))

    def recent_success_rate(self, count: int = 50) -> float:
        """Fraction of recent games that scored at least once."""
        if not self.score_history:
            return 0.0
        recent = self.score_history[-count:]
        return sum(1 for score in recent if score > 0) / len(recent)

    def training_time_hours(self) -> float:
        return (datetime.now() - self.training_start_time).total_seconds() / 3600.0

    def repair_loss_spikes(self) -> bool:
        """
        Detect alternating very-high / very-low values among the last ten
        losses and pull the extreme ones toward the mean of the twenty
        before them. Returns True if a repair was made.
        """
        history = self.loss_history
        if len(history) < 10:
            return False

        recent = history[-10:]
        switching = any(
            (recent[i] < LOW_LOSS and recent[i - 1] > HIGH_LOSS) or
            (recent[i] > HIGH_LOSS and recent[i - 1] < LOW_LOSS)
            for i in range(1, len(recent))
        )
        if not switching:
            return False

        earlier = history[max(0, len(history) - 30):len(history) - 10]
        stable = sum(earlier) / len(earlier) if earlier else 1.0

        for i in range(len(history) - 10, len(history)):
            value = history[i]
            if value < stable * 0.1 or value > stable * 10.0:
                history[i] = value * 0.2 + stable * 0.8
        return True

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> dict:
        return {
            'training_steps': self.training_steps,
            'total_reward': self.total_reward,
            'episode_counter': self.episode_counter,
            'average_loss': self.average_loss,
            'exploration_rate': self.exploration_rate,
            'max_score': self.max_score,
            'total_games_played': self.total_games_played,
            'accumulated_reward': self.accumulated_reward,
            'last_episode_score': self.last_episode_score,
            'recent_games_with_score': self.recent_games_with_score,
            'min_loss': self.min_loss if math.isfinite(self.min_loss) else None,
            'max_loss': self.max_loss if math.isfinite(self.max_loss) else None,
            'training_start_time': self.training_start_time.isoformat(),
            'reward_history': self.reward_history[-PERSISTED_TAIL:],
            'loss_history': self.loss_history[-PERSISTED_TAIL:],
            'score_history': self.score_history[-PERSISTED_TAIL:],
            'recent_scores': list(self.recent_scores),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'LearningStats':
        """Build from to_dict() output. Missing fields keep their defaults."""
        stats = cls()
        stats.training_steps = int(data.get('training_steps', 0))
        stats.total_reward = float(data.get('total_reward', 0.0))
        stats.episode_counter = int(data.get('episode_counter', 0))
        stats.average_loss = float(data.get('average_loss', 0.0))
        stats.exploration_rate = float(data.get('exploration_rate', 0.99))
        stats.max_score = int(data.get('max_score', 0))
        stats.total_games_played = int(data.get('total_games_played', 0))
        stats.accumulated_reward = float(data.get('accumulated_reward', 0.0))
        stats.last_episode_score = int(data.get('last_episode_score', 0))
        stats.recent_games_with_score = int(data.get('recent_games_with_score', 0))

        stats.min_loss = _optional_float(data.get('min_loss'), math.inf)
        stats.max_loss = _optional_float(data.get('max_loss'), -math.inf)

        started = data.get('training_start_time')
        if started:
            try:
                stats.training_start_time = datetime.fromisoformat(started)
            except (TypeError, ValueError):
                stats.training_start_time = datetime.now()

        stats.reward_history = [float(r) for r in data.get('reward_history', [])
                                if math.isfinite(float(r))]
        stats.score_history = [int(s) for s in data.get('score_history', [])]
        stats.recent_scores = [int(s) for s in data.get('recent_scores', [])][-RECENT_SCORES_LIMIT:]

        for value in data.get('loss_history', []):
            loss = float(value)
            if not math.isfinite(loss):
                continue
            stats.loss_history.append(loss)
            stats.min_loss = min(stats.min_loss, loss)
            stats.max_loss = max(stats.max_loss, min(loss, MAX_STORED_LOSS))

        return stats


def _optional_float(value, default: float) -> float:
    if value is None:
        return default
    value = float(value)
    return value if math.isfinite(value) else default
