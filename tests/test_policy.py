"""
Tests for action selection and the flag-directed heuristic.
"""

import random
from dataclasses import replace

import numpy as np
import pytest

from learning.actions import Direction, next_position
from learning.network import QNetwork
from learning.policy import (
    PolicySelector, directed_action, find_safe_directions, is_safe_direction,
    least_dangerous_direction, optimal_direction, sample_from_distribution, softmax,
)
from learning.world_view import distance


# ---------------------------------------------------------------------------
# Softmax and sampling
# ---------------------------------------------------------------------------

def test_softmax_sums_to_one():
    probabilities = softmax([1.0, 2.0, 3.0, -4.0], temperature=2.0)
    assert probabilities.sum() == pytest.approx(1.0)
    assert np.argmax(probabilities) == 2


def test_softmax_equal_values_are_uniform():
    np.testing.assert_allclose(softmax(np.zeros(8)), np.full(8, 0.125))


def test_softmax_handles_huge_values():
    probabilities = softmax([1e308, 1e308, -1e308], temperature=2.0)
    assert np.isfinite(probabilities).all()
    assert probabilities.sum() == pytest.approx(1.0)


def test_softmax_falls_back_to_uniform_on_nan():
    np.testing.assert_allclose(softmax([np.nan, 1.0]), [0.5, 0.5])


def test_higher_temperature_is_flatter():
    values = [0.0, 1.0, 2.0]
    assert softmax(values, 5.0).max() < softmax(values, 0.5).max()


def test_sample_from_distribution(rng):
    assert sample_from_distribution([0.0, 0.0, 1.0], rng) == 2
    assert sample_from_distribution([0.0, 0.0, 0.0], rng) == 2


# ---------------------------------------------------------------------------
# Heuristic
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("goal, expected", [
    ((5, 2), Direction.UP),
    ((5, 9), Direction.DOWN),
    ((8, 5), Direction.RIGHT),
    ((1, 5), Direction.LEFT),
    ((8, 1), Direction.UP_RIGHT),
    ((8, 8), Direction.DOWN_RIGHT),
    ((2, 8), Direction.DOWN_LEFT),
    ((2, 2), Direction.UP_LEFT),
    ((5, 5), Direction.DOWN),
])
def test_optimal_direction(goal, expected):
    assert optimal_direction((5, 5), goal) == expected


def test_directed_action_heads_for_flag(make_view):
    view = make_view(head=(5, 5), goal=(5, 2))
    action = directed_action(view)

    assert action == Direction.UP
    new_head = next_position(view.head, Direction(action))
    assert distance(new_head, view.goal) < view.distance_to_goal()


def test_directed_action_avoids_blocked_optimal(make_view):
    view = make_view(head=(5, 5), goal=(5, 2), obstacles=[(5, 4)])
    # UP_RIGHT and UP_LEFT both deviate by one step; the lower index wins
    assert directed_action(view) == Direction.UP_RIGHT


def test_directed_action_avoids_own_body(make_view):
    view = make_view(head=(5, 5), body=[(5, 4), (5, 3)], goal=(5, 1),
                     obstacles=[(4, 4)])
    assert directed_action(view) == Direction.UP_RIGHT


def test_safety_checks(make_view):
    view = make_view(head=(0, 5), body=[(1, 5)], goal=(5, 5), obstacles=[(0, 4)])
    assert not is_safe_direction(view, Direction.LEFT)
    assert not is_safe_direction(view, Direction.RIGHT)
    assert not is_safe_direction(view, Direction.UP)
    assert is_safe_direction(view, Direction.DOWN)
    assert set(find_safe_directions(view)) == {
        Direction.DOWN, Direction.DOWN_RIGHT, Direction.UP_RIGHT}


def test_least_dangerous_when_boxed_in(make_view):
    neighbours = [next_position((5, 5), d) for d in Direction]
    view = make_view(head=(5, 5), goal=(5, 0), obstacles=neighbours)

    assert find_safe_directions(view) == []
    assert directed_action(view) == int(least_dangerous_direction(view))


def test_least_dangerous_never_leaves_grid(make_view):
    view = make_view(head=(0, 0), goal=(9, 9), obstacles=[(1, 0), (1, 1), (0, 1)])
    choice = least_dangerous_direction(view)
    assert view.in_bounds(next_position(view.head, choice))


# ---------------------------------------------------------------------------
# PolicySelector
# ---------------------------------------------------------------------------

@pytest.fixture
def network(np_rng):
    return QNetwork(32, 16, 8, rng=np_rng)


def test_exploit_returns_q_values(agent_config, make_view, network, rng):
    selector = PolicySelector(agent_config, rng)
    observation = np.zeros(32)

    action, q_values = selector.select(observation, make_view(), 0.0, 0, network)

    assert 0 <= action < 8
    np.testing.assert_allclose(q_values, network.forward(observation))


def test_explore_is_random_before_threshold(agent_config, make_view, network):
    selector = PolicySelector(agent_config, random.Random(3))
    view = make_view(head=(5, 5), goal=(5, 2))
    actions = set()
    for _ in range(200):
        action, q_values = selector.select(np.zeros(32), view, 1.0, 0, network)
        assert q_values is None
        actions.add(action)
    assert actions == set(range(8))


def test_explore_is_directed_after_threshold(agent_config, make_view, network, rng):
    config = replace(agent_config, directed_move_probability=1.0,
                     directed_jitter_probability=0.0)
    selector = PolicySelector(config, rng)
    view = make_view(head=(5, 5), goal=(5, 2))

    for _ in range(20):
        action, _ = selector.select(np.zeros(32), view, 1.0, 11, network)
        assert action == Direction.UP


def test_stuck_agent_steers_before_threshold(agent_config, make_view, network, rng):
    config = replace(agent_config, directed_move_probability=1.0,
                     directed_jitter_probability=0.0)
    selector = PolicySelector(config, rng)
    view = make_view(head=(5, 5), goal=(5, 2))

    for _ in range(20):
        action, _ = selector.select(np.zeros(32), view, 1.0, 0, network, stuck=True)
        assert action == Direction.UP


def test_directed_jitter_stays_adjacent(agent_config, make_view, network, rng):
    config = replace(agent_config, directed_move_probability=1.0,
                     directed_jitter_probability=1.0)
    selector = PolicySelector(config, rng)
    view = make_view(head=(5, 5), goal=(8, 5))

    for _ in range(50):
        action, _ = selector.select(np.zeros(32), view, 1.0, 20, network)
        assert action in (Direction.UP_RIGHT, Direction.RIGHT, Direction.DOWN_RIGHT)
