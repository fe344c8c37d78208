"""
Shared fixtures for the toboggan test suite.

Run with:
    python -m pytest -v
"""

import random
from dataclasses import replace

import numpy as np
import pytest

from config import CONFIG, WORLD_CONFIG
from learning.world_view import WorldView


def build_view(head=(5, 5), body=(), goal=(8, 5), obstacles=(), width=10, height=10,
               game_over=False, score=0) -> WorldView:
    return WorldView(
        segments=(head,) + tuple(body),
        goal=goal,
        obstacles=tuple(obstacles),
        grid_width=width,
        grid_height=height,
        game_over=game_over,
        score=score,
    )


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_view():
    """Factory for world snapshots on a 10x10 grid by default."""
    return build_view


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def np_rng():
    return np.random.default_rng(1234)


@pytest.fixture
def agent_config(tmp_path):
    """Default agent parameters with saves redirected to a temp directory."""
    return replace(CONFIG, seed=7, save_directory=str(tmp_path / "saves"))


@pytest.fixture
def small_config(agent_config):
    """Small network and replay sizes so learning starts within a few ticks."""
    return replace(
        agent_config,
        hidden_size=16,
        replay_capacity=200,
        min_buffer_for_training=20,
        batch_size=8,
    )


@pytest.fixture
def world_config():
    return replace(WORLD_CONFIG, grid_width=10, grid_height=10, obstacle_count=5,
                   starvation_frames=60)
