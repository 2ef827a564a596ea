"""File-backed entity store for Komi Shelf.

Each record lives in its own JSON file under `<data_dir>/<collection>/`, and a
single index file maps id -> {title, folderPath, lastModified} so the library
can be enumerated without opening every record.

Write order is record file first, index second, both via atomic replace. A
crash in between leaves an unindexed file that `rebuild_index()` picks up;
a missing file behind an index entry is skipped by `list_all()`.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .logging_config import get_logger
from .models import BulkSaveResult, IndexEntry, LibraryIndex, SchemaVersionError
from .path_utils import canonical_path
from .utils import atomic_write_json, read_json, remove_file

logger = get_logger(__name__)

INDEX_FILENAME = "library_index.json"

_VALID_ID = re.compile(r"^[\w\-]+$")

T = TypeVar("T", bound=BaseModel)


class EntityStore(Generic[T]):
    """Keyed persistence of pydantic records, one file per id, plus an index.

    Records must expose `id`, `title` and `folder_path`. Loading goes through
    the model's `from_storage` classmethod when it has one, so schema upgrades
    happen on read.

    Call `initialize()` once before use.
    """

    def __init__(
        self,
        data_dir: Path,
        model: type[T],
        collection: str = "items",
        index_filename: str = INDEX_FILENAME,
        file_prefix: str = "item_",
    ):
        self.data_dir = Path(data_dir)
        self.model = model
        self.collection = collection
        self.collection_dir = self.data_dir / collection
        self.index_path = self.data_dir / index_filename
        self._file_prefix = file_prefix
        self._load: Callable[[Any], T] = getattr(model, "from_storage", model.model_validate)
        self._index: Optional[LibraryIndex] = None

    # --- Lifecycle ---

    def initialize(self) -> None:
        """Create directories and the index file if missing, then load the index."""
        self.collection_dir.mkdir(parents=True, exist_ok=True)

        if not self.index_path.exists():
            self._index = LibraryIndex()
            self._write_index()
            logger.info(f"Created {self.index_path.name} in {self.data_dir}")
            return

        try:
            self._index = LibraryIndex.from_storage(read_json(self.index_path))
        except (OSError, json.JSONDecodeError, ValidationError, SchemaVersionError) as exc:
            logger.error(f"✗ {self.index_path.name} unreadable ({exc}); rebuilding from record files")
            self._index = LibraryIndex()
            self.rebuild_index()

    @property
    def initialized(self) -> bool:
        return self._index is not None

    @property
    def index(self) -> LibraryIndex:
        if self._index is None:
            raise RuntimeError("EntityStore not initialized; call initialize() first")
        return self._index

    def _require_initialized(self) -> None:
        if self._index is None:
            raise RuntimeError("EntityStore not initialized; call initialize() first")

    # --- Paths ---

    def record_path(self, record_id: str) -> Path:
        if not _VALID_ID.match(record_id):
            raise ValueError(f"Invalid record id: {record_id!r}")
        return self.collection_dir / f"{self._file_prefix}{record_id}.json"

    def _id_from_path(self, path: Path) -> Optional[str]:
        stem = path.stem
        if not stem.startswith(self._file_prefix):
            return None
        return stem[len(self._file_prefix):] or None

    # --- Index persistence ---

    def _write_index(self) -> bool:
        index = self.index
        index.total_items = len(index.items)
        try:
            atomic_write_json(self.index_path, index.to_json_dict())
        except OSError as exc:
            logger.error(f"✗ Failed to write {self.index_path.name}: {exc}")
            return False
        return True

    def _index_entry(self, record: T) -> IndexEntry:
        return IndexEntry(
            title=record.title,
            folder_path=record.folder_path,
            last_modified=datetime.now(timezone.utc),
        )

    # --- CRUD ---

    def save(self, record_id: str, record: T) -> bool:
        """Write the record file, then update and persist the index.

        Returns False on I/O failure. Raises ValueError for an invalid id or
        an id that does not match the record.
        """
        path = self.record_path(record_id)
        if record.id != record_id:
            raise ValueError(f"Record id {record.id!r} does not match {record_id!r}")
        index = self.index

        try:
            atomic_write_json(path, record.model_dump(mode="json", by_alias=True))
        except OSError as exc:
            logger.error(f"✗ Failed to save {record_id}: {exc}")
            return False

        index.items[record_id] = self._index_entry(record)
        if not self._write_index():
            return False

        logger.debug(f"✓ Saved {record_id} ({record.title})")
        return True

    def get(self, record_id: str) -> Optional[T]:
        """Load a record. None when it does not exist or cannot be read."""
        try:
            path = self.record_path(record_id)
        except ValueError:
            return None
        self._require_initialized()

        if not path.exists():
            return None
        try:
            return self._load(read_json(path))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"✗ {path.name} unreadable: {exc}")
        except (ValidationError, SchemaVersionError) as exc:
            logger.error(f"✗ {path.name} rejected by schema: {exc}")
        return None

    def delete(self, record_id: str) -> bool:
        """Remove both the record file and its index entry."""
        try:
            path = self.record_path(record_id)
        except ValueError:
            return False
        index = self.index

        try:
            file_removed = remove_file(path)
        except OSError as exc:
            logger.error(f"✗ Failed to delete {path.name}: {exc}")
            return False

        entry = index.items.pop(record_id, None)
        if entry is None and not file_removed:
            return False
        if entry is not None and not self._write_index():
            return False

        logger.info(f"[-] Removed {record_id}")
        return True

    def contains(self, record_id: str) -> bool:
        return record_id in self.index.items

    def has_file(self, record_id: str) -> bool:
        """True when a record file exists on disk, readable or not."""
        try:
            return self.record_path(record_id).exists()
        except ValueError:
            return False

    def list_ids(self) -> list[str]:
        return list(self.index.items)

    def list_all(self) -> list[T]:
        """Load every indexed record, skipping missing or corrupt files."""
        records = []
        for record_id in list(self.index.items):
            record = self.get(record_id)
            if record is None:
                logger.warning(f"Skipping {record_id}: record file missing or unreadable")
                continue
            records.append(record)
        return records

    def find_by_folder(self, folder_path: str | Path) -> Optional[T]:
        """Find an indexed record by its folder path (index lookup, no full scan)."""
        target = canonical_path(Path(folder_path))
        for record_id, entry in self.index.items.items():
            if canonical_path(Path(entry.folder_path)) == target:
                record = self.get(record_id)
                if record is not None:
                    return record
        return None

    # --- Bulk ---

    def save_many(self, records: Iterable[T], mark_scan: bool = False) -> BulkSaveResult:
        """Save records one by one; a failure does not stop the rest.

        With mark_scan, `lastScan` is stamped once all saves are done.
        """
        result = BulkSaveResult()
        for record in records:
            try:
                ok = self.save(record.id, record)
            except ValueError as exc:
                logger.error(f"✗ Not saving {record.id!r}: {exc}")
                ok = False
            (result.saved if ok else result.failed).append(record.id)

        if mark_scan:
            self.index.last_scan = datetime.now(timezone.utc)
            self._write_index()

        if result.failed:
            logger.warning(f"Saved {result.count} records, {len(result.failed)} failed")
        return result

    # --- Maintenance ---

    def rebuild_index(self) -> tuple[int, int]:
        """Reconcile the index with the record files on disk.

        Returns (added, removed): entries created for unindexed files and
        entries dropped because their file is gone.
        """
        index = self.index
        added = 0
        removed = 0

        for record_id in list(index.items):
            if not self.record_path(record_id).exists():
                del index.items[record_id]
                removed += 1

        for path in sorted(self.collection_dir.glob(f"{self._file_prefix}*.json")):
            record_id = self._id_from_path(path)
            if record_id is None or record_id in index.items:
                continue
            record = self.get(record_id)
            if record is None or record.id != record_id:
                continue
            index.items[record_id] = IndexEntry(
                title=record.title,
                folder_path=record.folder_path,
                last_modified=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            )
            added += 1

        self._write_index()
        if added or removed:
            logger.info(f"Index rebuilt: {added} added, {removed} removed")
        return added, removed

    def clear(self) -> None:
        """Delete every record file and reset the index."""
        self._require_initialized()
        for path in self.collection_dir.glob(f"{self._file_prefix}*.json"):
            try:
                path.unlink()
            except OSError as exc:
                logger.error(f"✗ Failed to delete {path.name}: {exc}")
        self._index = LibraryIndex()
        self._write_index()

    def info(self) -> dict[str, Any]:
        index = self.index
        return {
            "totalItems": len(index.items),
            "lastScan": index.last_scan.isoformat() if index.last_scan else None,
            "storagePath": str(self.data_dir),
        }
