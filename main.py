"""
Toboggan - Main Entry Point
Trains the toboggan agent on the headless world from the terminal.
"""

import argparse
import logging
import random
from dataclasses import replace

from config import CONFIG, WORLD_CONFIG, LOGGING_CONFIG
from learning.agent import TobogganAgent
from persistence.save_manager import SaveManager
from toboggan_game.sim import TobogganSim
from utils.logger import get_logger


class TobogganTraining:
    """Main training controller."""

    def __init__(self, config=None, world_config=None, logging_config=None,
                 load_save: bool = True, training: bool = True):
        self.config = config or CONFIG
        self.world_config = world_config or WORLD_CONFIG
        self.logging_config = logging_config or LOGGING_CONFIG
        self.load_save = load_save
        self.training = training

        self.logger = get_logger()
        self.rng = random.Random(self.config.get_seed())

        self.save_manager = None
        self.agent: TobogganAgent = None
        self.sim: TobogganSim = None
        self.games_run = 0

    def initialize(self):
        """Create the world, the agent and its save manager."""
        self.logger.info(f"Initializing toboggan training (seed {self.config.seed})")

        self.save_manager = SaveManager(self.config.save_directory, config=self.config)
        self.agent = TobogganAgent(
            self.config,
            save_manager=self.save_manager,
            rng=random.Random(self.rng.getrandbits(32)),
            load=self.load_save,
        )
        self.sim = TobogganSim(self.world_config, rng=random.Random(self.rng.getrandbits(32)))
        self.agent.set_training_mode(self.training)

        stats = self.agent.stats
        self.logger.info(
            f"Agent ready: {stats.total_games_played} games played, "
            f"max score {stats.max_score}, {self.agent.replay_buffer_size} experiences"
        )

    def run_game(self) -> int:
        """Play one game to the end. Returns the score."""
        self.sim.reset()
        self.agent.start_episode(self.sim.view())

        while not self.sim.game_over:
            direction = self.agent.get_next_move()
            outcome = self.sim.step(direction)
            self.agent.update_after_move(self.sim.view(), outcome.collected_goal,
                                         outcome.hit_obstacle)

        return self.sim.score

    def run(self, games: int):
        try:
            for _ in range(games):
                score = self.run_game()
                self.games_run += 1

                if self.games_run % self.logging_config.episode_summary_interval == 0:
                    self._log_summary(score)
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.shutdown()

    def _log_summary(self, score: int):
        stats = self.agent.stats
        self.logger.log_episode(
            stats.total_games_played,
            score,
            stats.reward_history[-1] if stats.reward_history else 0.0,
            self.agent.exploration_rate,
            self.agent.learning_rate,
            stats.recent_average_loss(),
        )
        self.logger.info(
            f"Recent avg score {stats.recent_average_score():.2f} | "
            f"success {stats.recent_success_rate():.0%} | max {stats.max_score} | "
            f"buffer {self.agent.replay_buffer_size}"
        )

    def shutdown(self):
        self.logger.info("Saving...")
        if self.agent is not None and self.training:
            self.agent.save_all()
        self.logger.info(f"Shutdown complete after {self.games_run} games")


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Toboggan - train a flag-chasing agent")
    parser.add_argument('--games', type=int, default=1000, help='Number of games to play')
    parser.add_argument('--grid-width', type=int, default=WORLD_CONFIG.grid_width)
    parser.add_argument('--grid-height', type=int, default=WORLD_CONFIG.grid_height)
    parser.add_argument('--obstacles', type=int, default=WORLD_CONFIG.obstacle_count,
                        help='Number of obstacle cells')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--save-dir', default=CONFIG.save_directory, help='Directory for saved state')
    parser.add_argument('--no-load', action='store_true', help='Start fresh (ignore saves)')
    parser.add_argument('--no-train', action='store_true',
                        help='Play without training mode (no saving)')
    parser.add_argument('--log-dir', default=LOGGING_CONFIG.log_directory,
                        help='Directory for log files')
    parser.add_argument('--verbose', action='store_true', help='Show debug output on console')

    args = parser.parse_args()

    config = replace(CONFIG, seed=args.seed, save_directory=args.save_dir)
    world_config = replace(WORLD_CONFIG, grid_width=args.grid_width,
                           grid_height=args.grid_height, obstacle_count=args.obstacles)
    logging_config = replace(LOGGING_CONFIG, log_directory=args.log_dir)

    log_file = get_logger().configure(
        log_dir=logging_config.log_directory if logging_config.log_to_file else None,
        console=logging_config.log_to_console,
        console_level=logging.DEBUG if args.verbose else logging.INFO,
    )
    if log_file:
        get_logger().info(f"Logging to {log_file}")

    training = TobogganTraining(
        config=config,
        world_config=world_config,
        logging_config=logging_config,
        load_save=not args.no_load,
        training=not args.no_train,
    )
    training.initialize()
    training.run(args.games)


if __name__ == "__main__":
    main()
