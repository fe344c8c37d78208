"""
Smoke tests for the training runner and log configuration.
"""

import os
from dataclasses import replace

from config import LOGGING_CONFIG
from main import TobogganTraining
from utils.logger import get_logger


def test_logger_is_a_singleton():
    assert get_logger() is get_logger()


def test_configure_writes_log_file(tmp_path):
    logger = get_logger()
    try:
        log_file = logger.configure(log_dir=str(tmp_path / "logs"), console=False)
        logger.info("hello")
        assert os.path.exists(log_file)
    finally:
        logger.configure(log_dir=None, console=False)

    with open(log_file) as f:
        assert "[INFO] hello" in f.read()


def test_training_run_saves_on_exit(small_config, world_config):
    training = TobogganTraining(
        config=small_config,
        world_config=world_config,
        logging_config=replace(LOGGING_CONFIG, episode_summary_interval=2),
    )
    training.initialize()
    training.run(4)

    assert training.games_run == 4
    assert training.agent.stats.total_games_played == 4
    names = {save['filename'] for save in training.save_manager.list_saves()}
    assert names == {'network_weights.json', 'learning_stats.json', 'replay_buffer.npz'}


def test_play_only_run_does_not_save(small_config, world_config):
    training = TobogganTraining(config=small_config, world_config=world_config,
                                training=False)
    training.initialize()
    training.run(2)

    assert training.save_manager.list_saves() == []
