"""
Toboggan - Save Manager
Persistence for network weights, learning statistics and the replay store.
"""

import json
import os
import tempfile
import zipfile
import zlib
from datetime import datetime
from typing import Optional

import numpy as np

from config import CONFIG
from learning.network import IncompatibleNetworkError, QNetwork
from learning.stats import LearningStats
from learning.storage import ExperienceStore
from utils.logger import get_logger

SAVE_FORMAT_VERSION = '1.0.0'
BUFFER_KEYS = ('states', 'actions', 'rewards', 'next_states', 'dones')


class SaveManager:
    """
    Handles saving and loading agent state.

    Every save writes to a temporary file in the save directory and then
    renames it over the target, so an interrupted write leaves the
    previous file in place. Failures are logged, never raised.
    """

    def __init__(self, save_dir: str = None, config=None):
        self.config = config or CONFIG
        self.save_dir = save_dir or self.config.save_directory
        os.makedirs(self.save_dir, exist_ok=True)
        self.logger = get_logger()

    @property
    def weights_path(self) -> str:
        return os.path.join(self.save_dir, self.config.weights_filename)

    @property
    def stats_path(self) -> str:
        return os.path.join(self.save_dir, self.config.stats_filename)

    @property
    def buffer_path(self) -> str:
        return os.path.join(self.save_dir, self.config.buffer_filename)

    # =========================================================================
    # NETWORK
    # =========================================================================

    def save_network(self, network: QNetwork) -> Optional[str]:
        """Save weights. Returns the path written, or None on failure."""
        return self._save_json(network.to_dict(), self.weights_path, "network weights")

    def load_network(self, network: QNetwork) -> bool:
        """Load saved weights into network. False if absent, corrupt or incompatible."""
        data = self._load_json(self.weights_path, "network weights")
        if data is None:
            return False

        try:
            network.load_dict(data)
        except IncompatibleNetworkError as e:
            self.logger.warning(f"Ignoring saved network: {e}")
            return False
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Error loading network weights: {e}")
            return False

        self.logger.info(f"Loaded network weights from {self.weights_path}")
        return True

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def save_stats(self, stats: LearningStats) -> Optional[str]:
        return self._save_json(stats.to_dict(), self.stats_path, "learning stats")

    def load_stats(self) -> Optional[LearningStats]:
        data = self._load_json(self.stats_path, "learning stats")
        if data is None:
            return None

        try:
            stats = LearningStats.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.error(f"Error loading learning stats: {e}")
            return None

        self.logger.info(
            f"Loaded learning stats: {stats.total_games_played} games, "
            f"max score {stats.max_score}"
        )
        return stats

    # =========================================================================
    # REPLAY STORE
    # =========================================================================

    def save_buffer(self, store: ExperienceStore) -> Optional[str]:
        """Save the replay store as compressed numpy arrays."""
        path = self.buffer_path
        try:
            with self._atomic_file(path, 'wb') as f:
                np.savez_compressed(f, **store.to_arrays())
        except OSError as e:
            self.logger.error(f"Error saving replay buffer: {e}")
            return None

        self.logger.debug(f"Saved {len(store)} experiences to {path}")
        return path

    def load_buffer(self, store: ExperienceStore, state_size: Optional[int] = None) -> bool:
        path = self.buffer_path
        if not os.path.exists(path):
            return False

        try:
            with np.load(path, allow_pickle=False) as archive:
                arrays = {key: archive[key] for key in BUFFER_KEYS}
            store.load_arrays(arrays, state_size=state_size)
        except (OSError, EOFError, KeyError, ValueError, zipfile.BadZipFile, zlib.error) as e:
            self.logger.error(f"Error loading replay buffer: {e}")
            store.clear()
            return False

        self.logger.info(f"Loaded {len(store)} experiences from {path}")
        return True

    # =========================================================================
    # FILES
    # =========================================================================

    def list_saves(self) -> list[dict]:
        """List the agent's save files that exist."""
        saves = []

        for filepath in (self.weights_path, self.stats_path, self.buffer_path):
            if os.path.exists(filepath):
                stat = os.stat(filepath)
                saves.append({
                    'filename': os.path.basename(filepath),
                    'path': filepath,
                    'modified': stat.st_mtime,
                    'size': stat.st_size
                })

        return saves

    def delete_all(self):
        """Delete every save file, as part of a full reset."""
        for save in self.list_saves():
            try:
                os.remove(save['path'])
            except OSError as e:
                self.logger.warning(f"Could not delete {save['path']}: {e}")

    def _save_json(self, data: dict, filepath: str, label: str) -> Optional[str]:
        data['_meta'] = {
            'saved_at': datetime.now().isoformat(),
            'version': SAVE_FORMAT_VERSION,
        }

        try:
            with self._atomic_file(filepath, 'w') as f:
                json.dump(data, f)
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Error saving {label}: {e}")
            return None

        self.logger.debug(f"Saved {label} to {filepath}")
        return filepath

    def _load_json(self, filepath: str, label: str) -> Optional[dict]:
        if not os.path.exists(filepath):
            return None

        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Error loading {label}: {e}")
            return None

        if not isinstance(data, dict):
            self.logger.error(f"Error loading {label}: unexpected file contents")
            return None

        # Remove metadata before loading
        data.pop('_meta', None)
        return data

    def _atomic_file(self, filepath: str, mode: str):
        return _AtomicFile(filepath, mode)


class _AtomicFile:
    """Context manager writing to a temp file, renamed over the target on success."""

    def __init__(self, filepath: str, mode: str):
        self.filepath = filepath
        self.mode = mode
        self._file = None
        self._temp_path = None

    def __enter__(self):
        directory = os.path.dirname(os.path.abspath(self.filepath))
        fd, self._temp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        self._file = os.fdopen(fd, self.mode)
        return self._file

    def __exit__(self, exc_type, exc, tb):
        self._file.close()
        if exc_type is None:
            os.replace(self._temp_path, self.filepath)
        elif os.path.exists(self._temp_path):
            os.remove(self._temp_path)
        return False
