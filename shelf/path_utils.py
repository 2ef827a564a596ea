"""Path utilities shared by the scanner, the store and the rename coordinator.

Item identity is derived from the folder path, so everything that turns a path
into an id or a display string lives here to keep scans deterministic.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path

ID_HASH_LENGTH = 16
DISPLAY_SEPARATOR = " / "

_SLUG_INVALID = re.compile(r"[^\w\-]+")
_FOLDER_INVALID = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def canonical_path(path: Path) -> Path:
    """Absolute, normalized path without resolving symlinks."""
    return Path(os.path.normpath(os.path.abspath(path)))


def to_relative(absolute_path: Path, root: Path) -> str:
    """Convert an absolute path to a relative path string.

    Example:
        >>> to_relative(Path("/library/Marvel/X-Men"), Path("/library"))
        "Marvel/X-Men"
    """
    try:
        return Path(absolute_path).relative_to(root).as_posix()
    except ValueError:
        return Path(absolute_path).as_posix()


def display_title(folder: Path, root: Path) -> str:
    """Hierarchy-readable title: the folder path relative to root, ' / ' separated.

    Example:
        >>> display_title(Path("/Lib/AuthorA/SeriesX"), Path("/Lib"))
        "AuthorA / SeriesX"
    """
    return to_relative(folder, root).replace("/", DISPLAY_SEPARATOR)


def slugify(name: str) -> str:
    slug = _SLUG_INVALID.sub("-", _WHITESPACE.sub("-", name.strip().lower())).strip("-")
    return slug or "item"


def path_hash(path: Path) -> str:
    digest = hashlib.sha1(str(canonical_path(path)).encode("utf-8")).hexdigest()
    return digest[:ID_HASH_LENGTH]


def make_item_id(folder: Path, depth: int) -> str:
    """Stable item id: slug of the folder name, scan depth and a path hash.

    Example:
        >>> make_item_id(Path("/Lib/AuthorA/Series X"), 1)
        "series-x-1-3f0c1f7f2b1e9a4d"
    """
    return f"{slugify(folder.name)}-{depth}-{path_hash(folder)}"


def sanitize_folder_name(title: str) -> str:
    """Filesystem-safe folder name: drop <>:"/\\|?*, collapse whitespace, trim."""
    return _WHITESPACE.sub(" ", _FOLDER_INVALID.sub("", title)).strip()


def is_within(path: Path, folder: Path) -> bool:
    """True if path is folder itself or lives below it."""
    path = canonical_path(path)
    folder = canonical_path(folder)
    return path == folder or path.is_relative_to(folder)


def rebase(path: str, old_folder: Path, new_folder: Path) -> str:
    """Move a locator under old_folder to the same place under new_folder."""
    try:
        rel = Path(path).relative_to(old_folder)
    except ValueError:
        return path
    return str(new_folder / rel)
