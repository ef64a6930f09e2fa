#!/usr/bin/env python3
"""
State repositories.

The engine persists its ledger, battery history, baseline and monitoring
state as plain dictionaries. Repositories decide where those dictionaries
live; the engine never assumes a serialization format.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, Optional

from wellness_engine.exceptions import StorageError

logger = logging.getLogger(__name__)


class InMemoryRepository:
    """Repository keeping deep copies of state in a dictionary."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, data: Dict[str, Any]) -> None:
        encoded = json.dumps(data)
        with self._lock:
            self._data[key] = encoded

    def keys(self):
        with self._lock:
            return sorted(self._data)


class JsonFileRepository:
    """Repository storing one JSON file per key in a directory."""

    def __init__(self, directory: str):
        """
        Initialize the repository.

        Args:
            directory: Directory holding the state files (created if missing)
        """
        self.directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        if not key or os.sep in key or key.startswith("."):
            raise StorageError(f"Invalid state key: {key!r}")
        return os.path.join(self.directory, f"{key}.json")

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Load state for a key.

        Args:
            key: State key

        Returns:
            The stored dictionary, or None if nothing was saved yet

        Raises:
            StorageError: If the file exists but cannot be decoded
        """
        path = self._path(key)
        with self._lock:
            if not os.path.exists(path):
                return None
            try:
                with open(path, "r") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Could not read state {key!r}: {e}") from e

    def save(self, key: str, data: Dict[str, Any]) -> None:
        """
        Atomically replace the state for a key.

        Args:
            key: State key
            data: JSON-serializable dictionary
        """
        path = self._path(key)
        with self._lock:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as e:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise StorageError(f"Could not write state {key!r}: {e}") from e
        logger.debug(f"Saved state {key!r} to {path}")
