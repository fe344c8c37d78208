"""
Tests for the experience store.

Covers:
- Capacity bound and the two eviction modes
- Rejection of non-finite rewards
- Batch uniqueness, composition and partial batches
- Array round trip used for persistence
"""

import random

import numpy as np
import pytest

from learning.storage import Experience, ExperienceStore


def make_experience(reward=0.0, done=False, marker=0.0):
    state = np.full(4, marker)
    return Experience.create(state, 1, reward, state + 1.0, done)


def contains(store, experience):
    return any(item is experience for item in store)


@pytest.fixture
def store(rng):
    return ExperienceStore(capacity=10, batch_size=6, rng=rng)


def fill(store, count, reward=0.0):
    for i in range(count):
        store.insert(make_experience(reward=reward, marker=float(i)))


# ---------------------------------------------------------------------------
# Insertion and eviction
# ---------------------------------------------------------------------------

def test_experience_states_are_read_only():
    experience = make_experience()
    with pytest.raises(ValueError):
        experience.state[0] = 5.0


def test_length_never_exceeds_capacity(store):
    for i in range(50):
        store.insert(make_experience(reward=float(i % 7) * 20 - 60))
        assert len(store) <= store.capacity
    assert len(store) == store.capacity


def test_routine_insert_evicts_oldest(store):
    fill(store, 10)
    newest = make_experience(marker=99.0)
    store.insert(newest)

    assert len(store) == 10
    assert store[0].state[0] == 1.0
    assert store[-1] is newest


def test_goal_insert_into_full_store_keeps_length(store):
    fill(store, 10)
    goal = make_experience(reward=75.0)
    store.insert(goal)

    assert len(store) == 10
    assert contains(store, goal)


def test_explicit_importance_overrides_inference(rng):
    store = ExperienceStore(capacity=5, rng=rng)
    fill(store, 5)
    oldest = store[0]
    goal = make_experience(reward=75.0)
    store.insert(goal, important=False)

    assert len(store) == 5
    assert not contains(store, oldest)
    assert store[-1] is goal


def test_important_insert_evicts_randomly():
    survived = 0
    for seed in range(20):
        store = ExperienceStore(capacity=5, rng=random.Random(seed))
        fill(store, 5)
        oldest = store[0]
        store.insert(make_experience(), important=True)
        survived += contains(store, oldest)

    # The oldest entry is only evicted when it is the random pick
    assert survived > 0


@pytest.mark.parametrize("reward", [float('nan'), float('inf'), float('-inf')])
def test_non_finite_reward_dropped(store, reward):
    assert store.insert(make_experience(reward=reward)) is False
    assert len(store) == 0


def test_importance_classification(store):
    assert store.is_important(make_experience(reward=60.0))
    assert store.is_important(make_experience(reward=-20.0))
    assert store.is_important(make_experience(done=True))
    assert not store.is_important(make_experience(reward=-0.3))


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def test_batch_indices_are_unique(rng):
    store = ExperienceStore(capacity=100, batch_size=30, rng=rng)
    fill(store, 100)
    batch = store.sample_batch()

    assert len(batch) == 30
    assert len({id(item) for item in batch}) == 30


def test_small_store_yields_partial_batch(store):
    fill(store, 4)
    assert len(store.sample_batch()) == 4


def test_empty_store_yields_empty_batch(store):
    assert store.sample_batch() == []


def test_batch_prefers_recent_goals_and_crashes(rng):
    store = ExperienceStore(capacity=200, batch_size=30, rng=rng)
    for i in range(10):
        store.insert(make_experience(reward=75.0, marker=float(i)))
    for i in range(10):
        store.insert(make_experience(reward=-50.0, marker=float(i)))
    for i in range(80):
        store.insert(make_experience(reward=0.1, marker=float(i)))

    batch = store.sample_batch()
    goals = sum(1 for item in batch if item.reward > 50)
    crashes = sum(1 for item in batch if item.reward < -15)

    # 30 // 4 = 7 recent entries, then up to 10 goals and 5 crashes,
    # then 4 of the remaining 8 slots by reward magnitude (more crashes)
    assert len(batch) == 30
    assert goals == 10
    assert crashes >= 9
    for recent in list(store)[-7:]:
        assert any(item is recent for item in batch)


def test_remaining_slots_prefer_large_rewards(rng):
    store = ExperienceStore(capacity=100, batch_size=10, rng=rng)
    for i in range(50):
        store.insert(make_experience(reward=0.01 * i))
    large = make_experience(reward=10.0)
    store.insert(large)
    for i in range(49):
        store.insert(make_experience(reward=0.0))

    batch = store.sample_batch()
    assert any(item is large for item in batch)


# ---------------------------------------------------------------------------
# Persistence arrays
# ---------------------------------------------------------------------------

def test_array_round_trip(store, rng):
    fill(store, 6, reward=2.5)
    store.insert(make_experience(reward=-50.0, done=True))
    arrays = store.to_arrays()

    restored = ExperienceStore(capacity=10, rng=rng)
    restored.load_arrays(arrays, state_size=4)

    assert len(restored) == 7
    assert restored[-1].done is True
    assert restored[-1].reward == -50.0
    np.testing.assert_array_equal(restored[2].state, store[2].state)


def test_load_keeps_most_recent_when_over_capacity(store, rng):
    fill(store, 10)
    small = ExperienceStore(capacity=3, rng=rng)
    small.load_arrays(store.to_arrays())

    assert [item.state[0] for item in small] == [7.0, 8.0, 9.0]


def test_load_rejects_inconsistent_arrays(store):
    fill(store, 3)
    arrays = store.to_arrays()
    arrays['rewards'] = arrays['rewards'][:2]
    with pytest.raises(ValueError):
        store.load_arrays(arrays)


def test_load_rejects_wrong_state_width(store):
    fill(store, 3)
    with pytest.raises(ValueError):
        store.load_arrays(store.to_arrays(), state_size=32)
