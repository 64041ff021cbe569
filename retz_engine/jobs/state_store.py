"""
Persistence of DriverState between ticks.

The driver itself never stores anything; the caller loop saves the state of
every Suspend under a task key and loads it again before the next tick, so a
run that is stopped (or crashes) between ticks resumes without resubmitting.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from core.config import load_json, save_json
from retz_engine.jobs.errors import StateError
from retz_engine.jobs.state import DriverState

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Abstract base class for DriverState stores keyed by task."""

    @abstractmethod
    def load(self, key: str) -> Optional[DriverState]:
        """Return the saved state, or None if nothing is saved under ``key``."""

    @abstractmethod
    def save(self, key: str, state: DriverState) -> None:
        """Save ``state`` under ``key``, replacing any previous value."""

    @abstractmethod
    def clear(self, key: str) -> None:
        """Forget the state saved under ``key``."""

    def close(self) -> None:
        """Release resources. Default is a no-op."""


class FileStateStore(StateStore):
    """
    Stores each task's state as a JSON file (thread-safe).

    Example:
        >>> store = FileStateStore("state")
        >>> store.save("12345-build", state)
        >>> store.load("12345-build").job_id
        42
    """

    def __init__(self, base_dir: str = "state"):
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[DriverState]:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                data = load_json(str(path))
            except json.JSONDecodeError as e:
                raise StateError(f"State file '{path}' is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateError(f"State file '{path}' does not hold a mapping")
        return DriverState.from_dict(data)

    def save(self, key: str, state: DriverState) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            save_json(state.to_dict(), str(tmp_path))
            os.replace(tmp_path, path)
        logger.debug("Saved state for %s: %r", key, state)

    def clear(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            path.unlink(missing_ok=True)
        logger.debug("Cleared state for %s", key)

    def _path(self, key: str) -> Path:
        safe_key = key.replace(os.sep, "_").replace("/", "_")
        return self.base_dir / f"{safe_key}.json"
