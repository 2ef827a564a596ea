"""Library facade: builds the stores once and exposes the operation set.

The HTTP bridge, the CLI and tests all work through a `Library` instance.
Nothing touches disk until `initialize()` is called.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Iterable, Optional

from .config import ShelfConfig
from .documents import ProgressStore, SettingsStore, TagAssignmentStore
from .entity_store import EntityStore
from .logging_config import get_logger
from .models import (
    AffectedItem,
    BulkSaveResult,
    ItemRecord,
    ItemUpdate,
    ProgressEntry,
    RefreshResult,
    ScanResult,
    Settings,
    TagDeletionResult,
    TagTiers,
    TaxonomyCatalog,
)
from .scanner import DirectoryScanner
from .service import Cooldown, DEFAULT_CALLER, LibraryService
from .taxonomy import TaxonomyStore

logger = get_logger(__name__)


class Library:
    """Composition root for one data directory.

    Mutating calls are serialized with a lock; the HTTP bridge runs sync
    endpoints in a thread pool.
    """

    def __init__(self, config: ShelfConfig, cooldown: Optional[Cooldown] = None):
        self.config = config
        data_dir = config.data_dir

        self.items: EntityStore[ItemRecord] = EntityStore(data_dir, ItemRecord)
        self.scanner = DirectoryScanner(config.scanner)
        self.taxonomy = TaxonomyStore(data_dir, self.items)
        self.settings = SettingsStore(data_dir)
        self.progress = ProgressStore(data_dir)
        self.tag_assignments = TagAssignmentStore(data_dir)
        self.service = LibraryService(
            items=self.items,
            scanner=self.scanner,
            taxonomy=self.taxonomy,
            settings=self.settings,
            progress=self.progress,
            tag_assignments=self.tag_assignments,
            cooldown=cooldown or Cooldown(config.refresh.cooldown_seconds),
        )
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Create the data directory layout and load the index."""
        with self._lock:
            self.config.data_dir.mkdir(parents=True, exist_ok=True)
            self.items.initialize()
            self.taxonomy.initialize()
            self.settings.initialize()
            self.progress.initialize()
            self.tag_assignments.initialize()
        logger.info(f"Library ready at {self.config.data_dir} ({len(self.items.list_ids())} items)")

    @property
    def initialized(self) -> bool:
        return self.items.initialized

    def _root(self, path: Optional[Path]) -> Path:
        return Path(path) if path is not None else self.config.library_path

    # --- Scan / refresh ---

    def scan(self, path: Optional[Path] = None, max_depth: Optional[int] = None) -> ScanResult:
        """Scan without persisting anything."""
        return self.scanner.scan(self._root(path), max_depth=max_depth)

    def refresh(self, path: Optional[Path] = None, max_depth: Optional[int] = None) -> RefreshResult:
        with self._lock:
            return self.service.refresh(self._root(path), max_depth=max_depth)

    def refresh_incremental(
        self, path: Optional[Path] = None, caller: str = DEFAULT_CALLER
    ) -> Optional[list[ItemRecord]]:
        with self._lock:
            return self.service.refresh_incremental(self._root(path), caller=caller)

    # --- Items ---

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        return self.service.get_item(item_id)

    def list_items(self) -> list[ItemRecord]:
        return self.service.list_items()

    def save_item(self, record: ItemRecord) -> bool:
        with self._lock:
            return self.service.save_item(record)

    def update_item(self, item_id: str, update: ItemUpdate) -> Optional[ItemRecord]:
        with self._lock:
            return self.service.update_item(item_id, update)

    def bulk_update(self, item_ids: Iterable[str], update: ItemUpdate) -> BulkSaveResult:
        with self._lock:
            return self.service.bulk_update(item_ids, update)

    def add_tags(self, item_ids: Iterable[str], tags: TagTiers) -> BulkSaveResult:
        with self._lock:
            return self.service.add_tags(item_ids, tags)

    def delete_item(self, item_id: str) -> bool:
        with self._lock:
            return self.service.delete_item(item_id)

    def rename_folder(self, old_title: str, new_title: str, folder_path: Path) -> Optional[Path]:
        with self._lock:
            return self.service.rename_folder(old_title, new_title, Path(folder_path))

    def search(self, text: str = "", tags: Iterable[str] = ()) -> list[ItemRecord]:
        return self.service.search(text, tags)

    # --- Settings ---

    def get_settings(self) -> Settings:
        return self.settings.load()

    def set_settings(self, changes: dict[str, Any]) -> Optional[Settings]:
        with self._lock:
            return self.settings.update(changes)

    # --- Taxonomy ---

    def get_taxonomy(self) -> TaxonomyCatalog:
        return self.taxonomy.get_catalog()

    def set_taxonomy(self, catalog: TaxonomyCatalog) -> bool:
        with self._lock:
            return self.taxonomy.set_catalog(catalog)

    def add_tag(self, category: str, value: str) -> bool:
        with self._lock:
            return self.taxonomy.add_tag(category, value)

    def rename_tag(self, category: str, old: str, new: str, cascade: bool = False) -> int:
        with self._lock:
            return self.taxonomy.rename_tag(category, old, new, cascade=cascade)

    def delete_tag(self, category: str, value: str) -> TagDeletionResult:
        with self._lock:
            return self.taxonomy.delete_tag(category, value)

    def tag_usage(self, value: str) -> list[AffectedItem]:
        return self.taxonomy.tag_usage(value)

    # --- Progress / tag assignments ---

    def get_progress(self) -> dict[str, ProgressEntry]:
        return self.progress.load()

    def set_progress(self, item_id: str, page: int) -> bool:
        with self._lock:
            return self.service.set_progress(item_id, page)

    def get_tag_assignments(self) -> dict[str, TaxonomyCatalog]:
        return self.tag_assignments.load()

    def set_tag_assignments(self, assignments: dict[str, TaxonomyCatalog]) -> bool:
        with self._lock:
            return self.service.set_tag_assignments(assignments)

    # --- Maintenance ---

    def storage_info(self) -> dict[str, Any]:
        return self.items.info()

    def prune_missing(self) -> list[str]:
        with self._lock:
            return self.service.prune_missing()

    def rebuild_index(self) -> tuple[int, int]:
        with self._lock:
            return self.items.rebuild_index()

    def export_data(self) -> dict[str, Any]:
        return self.service.export_data()

    def import_data(self, payload: dict[str, Any]) -> BulkSaveResult:
        with self._lock:
            return self.service.import_data(payload)

    def clear(self) -> None:
        """Remove every item record and its reading progress."""
        with self._lock:
            self.items.clear()
            self.progress.save({})
        logger.info("[-] Library cleared")


def open_library(config: ShelfConfig) -> Library:
    """Build and initialize a Library for config."""
    library = Library(config)
    library.initialize()
    return library
