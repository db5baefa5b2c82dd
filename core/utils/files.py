# Atomic JSON file helpers shared by the file-backed stores

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union


def atomic_write_json(path: Union[str, Path], data: Any, mode: Optional[int] = None, indent: int = 2) -> None:
    """Write ``data`` as JSON to ``path`` via a temp file and ``os.replace``.

    Readers see either the previous document or the new one, never a partial
    write. ``mode`` restricts the file permissions before it becomes visible.
    Raises ``OSError`` (or ``TypeError`` for unserializable data).
    """
    path = Path(path)
    payload = json.dumps(data, indent=indent)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_json(path: Union[str, Path]) -> Any:
    """Parse a JSON file. Raises ``OSError`` or ``ValueError``."""
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)
