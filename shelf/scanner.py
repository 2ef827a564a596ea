"""Directory scanner for Komi Shelf.

Turns a folder tree into item records:
- a folder holding at least one supported image is a leaf item
- a folder holding none is a container whose subfolders are scanned one level deeper

The walk is an explicit worklist, bounded by max_depth, and visits each real
directory once so symlink cycles terminate.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .config import ScannerConfig
from .logging_config import get_logger
from .models import ItemRecord, ScanResult
from .path_utils import canonical_path, display_title, make_item_id
from .utils import short_path

logger = get_logger(__name__)


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Check if a file/folder should be ignored: hidden, AppleDouble or junk."""
    if name.startswith("."):
        return True
    return name in ignore_patterns


def is_image_file(name: str, extensions: Iterable[str]) -> bool:
    """Return True if the filename has one of the supported image extensions."""
    suffix = os.path.splitext(name)[1].lower().lstrip(".")
    return bool(suffix) and suffix in extensions


def page_sort_key(name: str) -> tuple[str, str]:
    """Case-insensitive filename order, raw name as tie-breaker."""
    return (name.casefold(), name)


@dataclass
class _Pending:
    path: Path
    depth: int


class DirectoryScanner:
    """Classifies folders under a root into leaf items and containers."""

    def __init__(self, config: Optional[ScannerConfig] = None):
        self.config = config or ScannerConfig()
        self._extensions = {ext.lower().lstrip(".") for ext in self.config.image_extensions}

    def scan(self, root_path: Path, max_depth: Optional[int] = None) -> ScanResult:
        """Scan root_path and return the leaf items found plus per-folder errors.

        Immediate children of root_path are depth 0. Items come out depth-first
        with siblings in case-insensitive name order.
        """
        max_depth = self.config.max_depth if max_depth is None else max_depth
        root = canonical_path(Path(root_path).expanduser())
        result = ScanResult()

        try:
            children = self._list_subdirs(root)
        except OSError as exc:
            message = f"Cannot read root {root}: {exc}"
            logger.error(f"✗ {message}")
            result.errors.append(message)
            return result

        visited: set[tuple[int, int]] = set()
        root_key = self._dir_key(root)
        if root_key is not None:
            visited.add(root_key)

        # Reversed so that popping from the end yields siblings in sorted order.
        stack = [_Pending(child, 0) for child in reversed(children)]
        while stack:
            pending = stack.pop()
            folder = pending.path

            if pending.depth > max_depth:
                logger.info(f"[SKIP] {short_path(folder)} is deeper than max_depth={max_depth}")
                continue

            key = self._dir_key(folder)
            if key is None:
                result.errors.append(f"Cannot stat {folder}")
                continue
            if key in visited:
                logger.debug(f"Already visited {folder} (symlink loop), skipping")
                continue
            visited.add(key)

            try:
                images, subdirs = self._read_folder(folder)
            except OSError as exc:
                message = f"Cannot read {folder}: {exc}"
                logger.warning(f"✗ {message}")
                result.errors.append(message)
                continue

            if images:
                try:
                    result.items.append(self._build_record(folder, root, pending.depth, images))
                except OSError as exc:
                    message = f"Cannot stat {folder}: {exc}"
                    logger.warning(f"✗ {message}")
                    result.errors.append(message)
                continue

            stack.extend(_Pending(sub, pending.depth + 1) for sub in reversed(subdirs))

        logger.info(
            f"[SCAN] {root}: {result.total} items, {len(result.errors)} errors"
        )
        return result

    # --- Helpers ---

    def _dir_key(self, path: Path) -> Optional[tuple[int, int]]:
        try:
            st = path.stat()
        except OSError:
            return None
        return (st.st_dev, st.st_ino)

    def _is_dir(self, entry: os.DirEntry) -> bool:
        try:
            return entry.is_dir(follow_symlinks=self.config.follow_symlinks)
        except OSError:
            return False

    def _is_file(self, entry: os.DirEntry) -> bool:
        try:
            return entry.is_file(follow_symlinks=self.config.follow_symlinks)
        except OSError:
            return False

    def _list_subdirs(self, folder: Path) -> list[Path]:
        if not folder.is_dir():
            raise NotADirectoryError(f"Not a directory: {folder}")
        return self._read_folder(folder)[1]

    def _read_folder(self, folder: Path) -> tuple[list[str], list[Path]]:
        """Return (image filenames, visible subfolders), both sorted."""
        images: list[str] = []
        subdirs: list[Path] = []
        ignore = self.config.ignore_patterns

        with os.scandir(folder) as entries:
            for entry in entries:
                if _should_ignore(entry.name, ignore):
                    continue
                if self._is_dir(entry):
                    subdirs.append(folder / entry.name)
                elif self._is_file(entry) and is_image_file(entry.name, self._extensions):
                    images.append(entry.name)

        images.sort(key=page_sort_key)
        subdirs.sort(key=lambda p: page_sort_key(p.name))
        return images, subdirs

    def _build_record(
        self, folder: Path, root: Path, depth: int, images: list[str]
    ) -> ItemRecord:
        pages = [str(folder / name) for name in images]
        mtime = folder.stat().st_mtime
        record = ItemRecord(
            id=make_item_id(folder, depth),
            title=folder.name,
            display_title=display_title(folder, root),
            author=folder.parent.name,
            cover_image=pages[0],
            total_pages=len(pages),
            pages=pages,
            folder_path=str(folder),
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )
        logger.debug(f"✓ {short_path(folder)} ({len(pages)} pages)")
        return record


def scan(
    root_path: Path,
    max_depth: int = 10,
    config: Optional[ScannerConfig] = None,
) -> ScanResult:
    """Convenience wrapper: scan root_path with a fresh DirectoryScanner."""
    return DirectoryScanner(config).scan(root_path, max_depth=max_depth)
