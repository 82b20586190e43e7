"""
worldstate/storage.py -- File persistence for the world-state tree.

The engine itself never touches the filesystem; this module is the
persistence collaborator the CLI (and any host) uses around it.  A missing
file yields a fresh tree; a file that exists but cannot be read as a tree
raises ``StateFileError`` so callers never save over it.  Writes are atomic
(temp file + ``os.replace``).

Usage::

    from worldstate.storage import WorldStateStore

    store = WorldStateStore("/path/to/state.json")
    tree = store.load()
    ...
    store.save(result.tree)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from platformdirs import user_data_dir
from pydantic import ValidationError

from worldstate.models.base import WorldState, new_world_state
from worldstate.utils import safe_read_json, safe_write_json

logger = logging.getLogger(__name__)

_APP_NAME = "WorldStateSync"
_APP_AUTHOR = "WorldStateSync"

STATE_FILENAME = "state.json"
REGISTRY_FILENAME = "registry.json"
NARRATIVE_CONFIG_FILENAME = "narrative-configs.json"
JOURNAL_FILENAME = "memory-journal.jsonl"


class StateFileError(Exception):
    """A state file exists but does not hold a valid world-state tree."""


def default_data_dir() -> Path:
    """Return (and create) the platform-appropriate user data directory."""
    path = Path(user_data_dir(_APP_NAME, _APP_AUTHOR))
    os.makedirs(path, exist_ok=True)
    return path


class WorldStateStore:
    """Load and save one world-state tree as JSON.

    Parameters
    ----------
    path : str or pathlib.Path, optional
        Location of the state file.  Defaults to ``state.json`` in
        ``default_data_dir()``.
    """

    def __init__(self, path=None):
        self.path = Path(path) if path else default_data_dir() / STATE_FILENAME

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> WorldState:
        """Return the stored tree, or a fresh one when no file exists yet.

        Raises
        ------
        StateFileError
            The file exists but is not JSON or fails model validation.
        """
        if not self.exists():
            logger.info("No state at %s, starting a new world", self.path)
            return new_world_state()
        data = safe_read_json(self.path, default=None)
        if data is None:
            raise StateFileError(f"State file {self.path} is not readable JSON")
        try:
            return WorldState.model_validate(data)
        except ValidationError as exc:
            raise StateFileError(
                f"State file {self.path} is malformed ({exc.error_count()} error(s)): {exc}"
            ) from exc

    def save(self, tree: WorldState) -> None:
        safe_write_json(self.path, tree.to_json_dict())
        logger.debug("Saved world state to %s", self.path)
