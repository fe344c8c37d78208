"""
Toboggan - Event Logger
Structured logging for training runs and persistence.
"""

import logging
import os
from datetime import datetime
from typing import Optional


class EventLogger:
    """Logger for agent and training events."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True

        self.logger = logging.getLogger("toboggan")
        self.logger.setLevel(logging.DEBUG)

        self.formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )
        self.log_file: Optional[str] = None

    def configure(self, log_dir: Optional[str] = "logs", console: bool = True,
                  console_level: int = logging.INFO) -> Optional[str]:
        """
        Attach output handlers. Called once by the entry point.
        Returns the log file path, or None when file output is disabled.
        """
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.log_file = None
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_file = os.path.join(log_dir, f"toboggan_{timestamp}.log")

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(self.formatter)
            self.logger.addHandler(file_handler)

        if console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(console_level)
            console_handler.setFormatter(self.formatter)
            self.logger.addHandler(console_handler)

        return self.log_file

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def log_episode(self, game: int, score: int, reward: float,
                    exploration: float, learning_rate: float, loss: float):
        """Log a finished game."""
        self.info(
            f"Game {game}: score={score} reward={reward:.1f} "
            f"eps={exploration:.3f} lr={learning_rate:.6f} loss={loss:.4f}"
        )

    def log_learning(self, step: int, batch_size: int, loss: float):
        """Log a learning pass."""
        if step % 100 == 0:  # Log every 100 passes
            self.debug(f"[Step {step}] Learning: batch={batch_size} loss={loss:.4f}")

    def log_schedule(self, event: str, details: str):
        """Log an adaptive schedule change."""
        self.debug(f"Schedule {event}: {details}")


# Global logger instance
def get_logger() -> EventLogger:
    """Get the global event logger."""
    return EventLogger()
