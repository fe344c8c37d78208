"""
Tests for the headless toboggan world.
"""

import random
from dataclasses import replace

import pytest

from learning.actions import Direction
from toboggan_game.sim import StepOutcome, TobogganSim


@pytest.fixture
def sim(world_config):
    return TobogganSim(world_config, rng=random.Random(8))


def clear_world(sim, goal=(1, 1)):
    sim.obstacles = []
    sim.goal = goal


def test_reset_layout(sim):
    assert sim.segments == [(5, 5), (4, 5), (3, 5)]
    assert sim.direction == Direction.RIGHT
    assert all(cell[1] != 5 for cell in sim.obstacles)
    assert not set(sim.obstacles) & set(sim.segments)

    x, y = sim.goal
    assert 1 <= x <= 8 and 1 <= y <= 8
    assert sim.goal not in sim.obstacles
    assert sim.goal not in sim.segments


def test_move_shifts_body(sim):
    clear_world(sim)
    outcome = sim.step(Direction.UP)

    assert outcome == StepOutcome(False, False, False)
    assert sim.segments == [(5, 4), (5, 5), (4, 5)]


def test_reverse_turn_is_ignored(sim):
    clear_world(sim)
    sim.step(Direction.LEFT)
    assert sim.head == (6, 5)
    assert sim.direction == Direction.RIGHT


def test_wall_collision_ends_game(sim):
    clear_world(sim)
    sim.segments = [(9, 5), (8, 5), (7, 5)]
    outcome = sim.step(Direction.RIGHT)

    assert outcome == StepOutcome(False, True, True)
    assert sim.game_over
    assert sim.head == (9, 5)


def test_obstacle_collision_ends_game(sim):
    clear_world(sim)
    sim.obstacles = [(6, 5)]
    assert sim.step(Direction.RIGHT).hit_obstacle


def test_self_collision_ends_game(sim):
    clear_world(sim)
    sim.segments = [(5, 5), (5, 6), (6, 6), (6, 5), (6, 4)]
    sim.direction = Direction.UP
    assert sim.step(Direction.RIGHT) == StepOutcome(False, True, True)


def test_collecting_flag_grows_and_relocates(sim):
    clear_world(sim, goal=(6, 5))
    outcome = sim.step(Direction.RIGHT)

    assert outcome.collected_goal
    assert sim.score == 1
    assert len(sim.segments) == 4
    assert sim.goal != (6, 5)
    assert sim.goal not in sim.segments


def test_starvation_ends_game(world_config):
    sim = TobogganSim(replace(world_config, starvation_frames=2), rng=random.Random(1))
    clear_world(sim)

    assert not sim.step(Direction.RIGHT).game_over
    assert not sim.step(Direction.RIGHT).game_over
    outcome = sim.step(Direction.RIGHT)
    assert outcome.game_over
    assert not outcome.hit_obstacle


def test_step_after_game_over(sim):
    sim.game_over = True
    assert sim.step(Direction.UP) == StepOutcome(False, False, True)


def test_view_snapshot(sim):
    view = sim.view()
    assert view.head == sim.head
    assert view.body == tuple(sim.segments[1:])
    assert view.goal == sim.goal
    assert view.grid_width == 10
    assert not view.game_over
