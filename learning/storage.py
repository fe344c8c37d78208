import random
from typing import Iterator, List, NamedTuple, Optional, Set

import numpy as np


class Experience(NamedTuple):
    """One state-action-reward transition. States are read-only copies."""
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool

    @classmethod
    def create(cls, state, action, reward, next_state, done) -> 'Experience':
        return cls(_frozen_copy(state), int(action), float(reward),
                   _frozen_copy(next_state), bool(done))


def _frozen_copy(values) -> np.ndarray:
    array = np.array(values, dtype=np.float64, copy=True)
    array.flags.writeable = False
    return array


class ExperienceStore:
    """
    Bounded replay memory with importance-aware eviction and a
    prioritised (rule-based) batch builder.

    When full, routine transitions push out the oldest entry while
    important ones (flag collected, obstacle hit) replace a random entry,
    so rare high-signal transitions are not flushed purely by age.
    """

    def __init__(self, capacity: int = 20000, batch_size: int = 192,
                 goal_threshold: float = 50.0, crash_threshold: float = -15.0,
                 rng: Optional[random.Random] = None):
        self.capacity = capacity
        self.batch_size = batch_size
        self.goal_threshold = goal_threshold
        self.crash_threshold = crash_threshold
        self.rng = rng or random.Random()
        self.buffer: List[Experience] = []

    def __len__(self) -> int:
        return len(self.buffer)

    def __iter__(self) -> Iterator[Experience]:
        return iter(self.buffer)

    def __getitem__(self, index: int) -> Experience:
        return self.buffer[index]

    def clear(self):
        self.buffer.clear()

    def is_important(self, experience: Experience) -> bool:
        return (experience.done or
                experience.reward > self.goal_threshold or
                experience.reward < self.crash_threshold)

    def insert(self, experience: Experience, important: Optional[bool] = None) -> bool:
        """
        Add a transition, evicting one entry first if the store is full.
        Transitions with a non-finite reward are dropped; returns False then.
        """
        if not np.isfinite(experience.reward):
            return False

        if important is None:
            important = self.is_important(experience)

        while len(self.buffer) >= self.capacity:
            if important:
                del self.buffer[self.rng.randrange(len(self.buffer))]
            else:
                del self.buffer[0]

        self.buffer.append(experience)
        return True

    def sample_batch(self, target_size: Optional[int] = None) -> List[Experience]:
        """
        Build a batch of unique transitions, in order of preference:
        most recent, flag collections, crashes, then half by reward
        magnitude and half uniformly at random.
        """
        target_size = self.batch_size if target_size is None else target_size
        batch: List[Experience] = []
        selected: Set[int] = set()

        self._add_recent(batch, selected, target_size)

        goal_indices = [i for i, exp in enumerate(self.buffer)
                        if exp.reward > self.goal_threshold]
        self._add_shuffled(goal_indices, batch, selected, target_size, target_size // 3)

        crash_indices = [i for i, exp in enumerate(self.buffer)
                         if exp.reward < self.crash_threshold]
        self._add_shuffled(crash_indices, batch, selected, target_size, target_size // 6)

        self._fill_remaining(batch, selected, target_size)
        return batch

    def _take(self, index: int, batch: List[Experience], selected: Set[int]):
        batch.append(self.buffer[index])
        selected.add(index)

    def _add_recent(self, batch, selected, target_size):
        recent_count = min(target_size // 4, len(self.buffer) // 10)
        last = len(self.buffer) - 1
        for i in range(recent_count):
            index = last - i
            if index not in selected:
                self._take(index, batch, selected)

    def _add_shuffled(self, indices, batch, selected, target_size, max_count):
        if not indices:
            return

        self.rng.shuffle(indices)
        added = 0
        for index in indices:
            if len(batch) >= target_size or added >= max_count:
                break
            if index not in selected:
                self._take(index, batch, selected)
                added += 1

    def _fill_remaining(self, batch, selected, target_size):
        if len(batch) >= target_size or len(self.buffer) <= len(selected):
            return

        remaining = [i for i in range(len(self.buffer)) if i not in selected]

        # Highest |reward| first; stable sort keeps older entries first on ties
        by_magnitude = sorted(remaining, key=lambda i: -abs(self.buffer[i].reward))
        prioritized_count = (target_size - len(batch)) // 2
        for index in by_magnitude[:prioritized_count]:
            self._take(index, batch, selected)

        leftover = [i for i in remaining if i not in selected]
        self.rng.shuffle(leftover)
        for index in leftover[:max(0, target_size - len(batch))]:
            self._take(index, batch, selected)

    def to_arrays(self) -> dict:
        """Column arrays for persistence."""
        if not self.buffer:
            return {
                'states': np.zeros((0, 0)),
                'actions': np.zeros(0, dtype=np.int64),
                'rewards': np.zeros(0),
                'next_states': np.zeros((0, 0)),
                'dones': np.zeros(0, dtype=bool),
            }
        return {
            'states': np.stack([exp.state for exp in self.buffer]),
            'actions': np.array([exp.action for exp in self.buffer], dtype=np.int64),
            'rewards': np.array([exp.reward for exp in self.buffer], dtype=np.float64),
            'next_states': np.stack([exp.next_state for exp in self.buffer]),
            'dones': np.array([exp.done for exp in self.buffer], dtype=bool),
        }

    def load_arrays(self, arrays, state_size: Optional[int] = None):
        """
        Replace the contents from to_arrays() output. Keeps the most recent
        entries if the saved store is larger than the capacity.
        """
        states = np.asarray(arrays['states'], dtype=np.float64)
        actions = np.asarray(arrays['actions'])
        rewards = np.asarray(arrays['rewards'], dtype=np.float64)
        next_states = np.asarray(arrays['next_states'], dtype=np.float64)
        dones = np.asarray(arrays['dones'])

        count = len(actions)
        if not (len(states) == len(rewards) == len(next_states) == len(dones) == count):
            raise ValueError("Replay arrays have inconsistent lengths")
        if count and state_size is not None and states.shape[1] != state_size:
            raise ValueError(
                f"Replay states have width {states.shape[1]}, expected {state_size}"
            )

        start = max(0, count - self.capacity)
        self.buffer = [
            Experience.create(states[i], actions[i], rewards[i], next_states[i], dones[i])
            for i in range(start, count)
        ]
