"""
Crash-recovery snapshot file.

One JSON document holds every instrument's machine snapshot and signal
history. It is overwritten on every save (last write wins)::

    {"saved_at": "...", "instruments": {"<token>": {"fsm": {...}, "signals": [...]}}}
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from core.utils.exceptions import PersistenceError
from core.utils.files import atomic_write_json, read_json


class SnapshotStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def write(self, payload: Dict[str, Any]) -> None:
        try:
            atomic_write_json(self.path, payload)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Failed to write state snapshot: {e}", path=str(self.path)) from e

    def read(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or ``None`` when nothing was saved yet."""
        if not self.path.exists():
            return None
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read state snapshot: {e}", path=str(self.path)) from e
        if not isinstance(data, dict):
            raise PersistenceError("State snapshot is not a JSON object", path=str(self.path))
        return data
