"""Utility functions for Komi Shelf."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + name.

    Example: /very/long/path/to/Author/Series -> Author/Series
    """
    path = Path(path)
    return f"{path.parent.name}/{path.name}"


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize data to path through a temp file and an atomic replace.

    Raises OSError (and TypeError for unserializable data); callers decide
    how a failed write is reported.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    payload = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def read_json(path: Path) -> Any:
    """Load a JSON document. Raises OSError / json.JSONDecodeError."""
    return json.loads(path.read_text(encoding="utf-8"))


def remove_file(path: Path) -> bool:
    """Unlink path. Returns False if it did not exist."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
