"""Folder rename for title edits.

The new folder is a sibling of the old one named after the sanitized title.
Nothing is touched unless the rename can succeed; callers commit the record
change only after a non-None result.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .logging_config import get_logger
from .path_utils import sanitize_folder_name

logger = get_logger(__name__)


def target_folder(new_title: str, old_folder_path: Path) -> Optional[Path]:
    """Sibling path for new_title, or None if the title sanitizes to nothing."""
    name = sanitize_folder_name(new_title)
    if not name:
        return None
    return Path(old_folder_path).parent / name


def _same_directory(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def rename_folder(
    old_title: str, new_title: str, old_folder_path: Path
) -> Optional[Path]:
    """Rename the item folder to match new_title.

    Returns the new folder path, the old one when the sanitized names are
    equal, or None when the rename cannot or did not happen.
    """
    old_path = Path(old_folder_path)

    if sanitize_folder_name(old_title) == sanitize_folder_name(new_title):
        return old_path

    new_path = target_folder(new_title, old_path)
    if new_path is None:
        logger.warning(f"✗ Rename refused: {new_title!r} is not a usable folder name")
        return None

    if new_path == old_path:
        return old_path

    if not old_path.is_dir():
        logger.warning(f"✗ Rename refused: {old_path} does not exist")
        return None

    # Case-only renames point at the same directory on case-insensitive filesystems.
    if new_path.exists() and not _same_directory(old_path, new_path):
        logger.warning(f"✗ Rename refused: {new_path} already exists")
        return None

    try:
        os.rename(old_path, new_path)
    except OSError as exc:
        logger.error(f"✗ Failed to rename {old_path.name} → {new_path.name}: {exc}")
        return None

    logger.info(f"[→] Renamed folder: {old_path.name} → {new_path.name}")
    return new_path


def revert_rename(new_folder_path: Path, old_folder_path: Path) -> bool:
    """Move a renamed folder back. Used when the record save after a rename fails."""
    try:
        os.rename(new_folder_path, old_folder_path)
    except OSError as exc:
        logger.error(
            f"✗ Could not restore {Path(old_folder_path).name} from {Path(new_folder_path).name}: {exc}"
        )
        return False
    logger.info(f"[←] Restored folder: {Path(old_folder_path).name}")
    return True
