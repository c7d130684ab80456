"""
State persistence utilities.

Live trading sessions need to remember their position across restarts:
whether an asset position is open and what it cost.  This module
provides simple JSON-based load/save functions and the checkpoint store
built on them.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from ..execution.errors import CheckpointError
from ..execution.models import Position


def load_state(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON state file.

    Parameters
    ----------
    path : str
        Path to the JSON file.

    Returns
    -------
    dict or None
        The state dictionary if the file exists, otherwise `None`.
    """
    file_path = Path(path)
    if not file_path.exists():
        return None
    with file_path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write a JSON state file to disk.

    The file is written next to its destination first and then renamed
    over it, so a crash never leaves a half-written state behind.

    Parameters
    ----------
    path : str
        Path to the output file.
    state : dict
        Arbitrary state dictionary.  Must be serialisable to JSON.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(state, fh, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, file_path)


class CheckpointStore:
    """Persist the current `Position` as a JSON file."""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> Optional[Position]:
        """Return the saved position, or `None` when there is no checkpoint.

        Raises
        ------
        CheckpointError
            If the file exists but cannot be read or does not describe a
            valid position.
        """
        try:
            state = load_state(self.path)
        except (OSError, ValueError) as exc:
            raise CheckpointError(f"Cannot read checkpoint {self.path}: {exc}") from exc
        if state is None:
            return None
        try:
            return Position.from_dict(state)
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise CheckpointError(f"Invalid checkpoint {self.path}: {exc}") from exc

    def save(self, position: Position) -> None:
        """Write `position`; raises `OSError` when the file cannot be written."""
        save_state(self.path, position.to_dict())
