"""Library service: reconciles scans with saved metadata.

The filesystem decides structure (pages, cover, folder, mtime). Saved records
decide everything the user edited (title, author, description, tags) and the
reading position. A refresh never resets a saved user field to a scan default.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from .documents import ProgressStore, SettingsStore, TagAssignmentStore
from .entity_store import EntityStore
from .logging_config import get_logger
from .models import (
    CURRENT_SCHEMA_VERSION,
    TAG_TIERS,
    BulkSaveResult,
    ItemRecord,
    ItemUpdate,
    RefreshResult,
    SchemaVersionError,
    TagTiers,
    TaxonomyCatalog,
)
from .path_utils import DISPLAY_SEPARATOR, canonical_path, is_within, rebase
from .rename import rename_folder, revert_rename
from .scanner import DirectoryScanner
from .taxonomy import TaxonomyStore
from .utils import short_path

logger = get_logger(__name__)

DEFAULT_CALLER = "default"


class Cooldown:
    """Per-caller rate limit: one run per `seconds`."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._last_run: dict[str, float] = {}

    def ready(self, caller: str) -> bool:
        last = self._last_run.get(caller)
        return last is None or self._clock() - last >= self.seconds

    def mark(self, caller: str) -> None:
        self._last_run[caller] = self._clock()

    def reset(self, caller: Optional[str] = None) -> None:
        if caller is None:
            self._last_run.clear()
        else:
            self._last_run.pop(caller, None)


def merge_records(scanned: ItemRecord, existing: Optional[ItemRecord]) -> ItemRecord:
    """Combine a fresh scan with the saved record for the same folder.

    Structural fields come from `scanned`; user fields and the reading
    position from `existing`. The page is clamped to the new page count.
    """
    if existing is None:
        return scanned
    last_page = max(scanned.total_pages, 1)
    return scanned.model_copy(
        update={
            "title": existing.title,
            "author": existing.author,
            "description": existing.description,
            "tags": existing.tags.model_copy(deep=True),
            "current_page": min(max(existing.current_page, 1), last_page),
        }
    )


def _relocated(record: ItemRecord, new_folder: Path) -> dict[str, Any]:
    """Field updates that move a record's locators onto new_folder."""
    old_folder = Path(record.folder_path)
    parts = record.display_title.split(DISPLAY_SEPARATOR) if record.display_title else []
    if parts:
        parts[-1] = new_folder.name
    return {
        "folder_path": str(new_folder),
        "pages": [rebase(page, old_folder, new_folder) for page in record.pages],
        "cover_image": (
            rebase(record.cover_image, old_folder, new_folder) if record.cover_image else None
        ),
        "display_title": DISPLAY_SEPARATOR.join(parts) if parts else new_folder.name,
    }


def matches_search(record: ItemRecord, text: str = "", tags: Iterable[str] = ()) -> bool:
    needle = text.strip().casefold()
    if needle:
        haystack = (record.title, record.display_title, record.author)
        if not any(needle in field.casefold() for field in haystack):
            return False
    return all(record.tags.contains(tag) for tag in tags)


class LibraryService:
    def __init__(
        self,
        items: EntityStore[ItemRecord],
        scanner: DirectoryScanner,
        taxonomy: TaxonomyStore,
        settings: SettingsStore,
        progress: ProgressStore,
        tag_assignments: TagAssignmentStore,
        cooldown: Optional[Cooldown] = None,
    ):
        self.items = items
        self.scanner = scanner
        self.taxonomy = taxonomy
        self.settings = settings
        self.progress = progress
        self.tag_assignments = tag_assignments
        self.cooldown = cooldown or Cooldown(5.0)

    # --- Refresh ---

    def refresh(self, root_path: Path, max_depth: Optional[int] = None) -> RefreshResult:
        """Scan root_path, merge with saved records and persist the result."""
        scan = self.scanner.scan(root_path, max_depth=max_depth)

        merged: list[ItemRecord] = []
        rekeyed: dict[str, str] = {}
        errors = list(scan.errors)
        unreadable: list[str] = []
        for scanned in scan.items:
            existing = self.items.get(scanned.id)
            if existing is None and self.items.has_file(scanned.id):
                # Saved file exists but was rejected on load; leave it untouched.
                unreadable.append(scanned.id)
                errors.append(f"Record {scanned.id} for {scanned.folder_path} could not be loaded; not overwritten")
                continue
            if existing is None:
                existing = self.items.find_by_folder(scanned.folder_path)
                if existing is not None and existing.id != scanned.id:
                    rekeyed[scanned.id] = existing.id
            merged.append(merge_records(scanned, existing))

        saved = self.items.save_many(merged, mark_scan=True)

        for new_id in saved.saved:
            old_id = rekeyed.get(new_id)
            if old_id is None:
                continue
            self.items.delete(old_id)
            self.progress.move(old_id, new_id)
            logger.info(f"[→] Re-keyed {old_id} → {new_id}")

        failed = saved.failed + unreadable
        logger.info(
            f"✓ Refresh of {short_path(Path(root_path))}: {len(merged)} items, "
            f"{len(saved.saved)} saved, {len(failed)} failed, {len(errors)} errors"
        )
        return RefreshResult(items=merged, errors=errors, saved=saved.saved, failed=failed)

    def refresh_incremental(
        self, folder_path: Path, caller: str = DEFAULT_CALLER
    ) -> Optional[list[ItemRecord]]:
        """Reload indexed records at or below folder_path without scanning.

        Returns None when `caller` ran less than the cooldown ago.
        """
        if not self.cooldown.ready(caller):
            logger.debug(f"Incremental refresh for {caller!r} throttled")
            return None

        folder = canonical_path(Path(folder_path))
        records = []
        for record_id, entry in list(self.items.index.items.items()):
            if not is_within(Path(entry.folder_path), folder):
                continue
            record = self.items.get(record_id)
            if record is not None:
                records.append(record)

        self.cooldown.mark(caller)
        return records

    # --- Items ---

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        return self.items.get(item_id)

    def list_items(self) -> list[ItemRecord]:
        return self.items.list_all()

    def save_item(self, record: ItemRecord) -> bool:
        return self.items.save(record.id, record)

    def delete_item(self, item_id: str) -> bool:
        if not self.items.delete(item_id):
            return False
        self.progress.forget([item_id])
        return True

    def update_item(self, item_id: str, update: ItemUpdate) -> Optional[ItemRecord]:
        """Apply user edits. A title change renames the folder first.

        Returns the saved record, or None if the item is unknown, the rename
        was refused or the save failed (the rename is then undone).
        """
        record = self.items.get(item_id)
        if record is None:
            return None

        changes: dict[str, Any] = {}
        old_folder = Path(record.folder_path)
        new_folder = old_folder

        if update.title is not None and update.title.strip() and update.title != record.title:
            renamed = rename_folder(record.title, update.title, old_folder)
            if renamed is None:
                return None
            new_folder = renamed
            changes["title"] = update.title.strip()
            if new_folder != old_folder:
                changes.update(_relocated(record, new_folder))

        if update.author is not None:
            changes["author"] = update.author
        if update.description is not None:
            changes["description"] = update.description
        if update.tags is not None:
            changes["tags"] = update.tags

        if not changes:
            return record

        updated = record.model_copy(update=changes)
        if not self.items.save(updated.id, updated):
            if new_folder != old_folder:
                revert_rename(new_folder, old_folder)
            return None
        return updated

    def rename_folder(self, old_title: str, new_title: str, folder_path: Path) -> Optional[Path]:
        """Rename a folder and move the record that points at it.

        Returns the new folder path, or None when the rename was refused or
        the record could not be saved (the rename is then undone).
        """
        old_folder = Path(folder_path)
        record = self.items.find_by_folder(old_folder)
        new_folder = rename_folder(old_title, new_title, old_folder)
        if new_folder is None or record is None:
            return new_folder

        changes: dict[str, Any] = {"title": new_title.strip() or record.title}
        if new_folder != old_folder:
            changes.update(_relocated(record, new_folder))
        updated = record.model_copy(update=changes)
        if not self.items.save(updated.id, updated):
            if new_folder != old_folder:
                revert_rename(new_folder, old_folder)
            return None
        return new_folder

    def bulk_update(self, item_ids: Iterable[str], update: ItemUpdate) -> BulkSaveResult:
        """Apply author, description and tags to several items. Titles are left alone."""
        changes: dict[str, Any] = {}
        if update.author is not None:
            changes["author"] = update.author
        if update.description is not None:
            changes["description"] = update.description
        if update.tags is not None:
            changes["tags"] = update.tags
        return self._apply_each(item_ids, lambda record: record.model_copy(update=changes))

    def add_tags(self, item_ids: Iterable[str], tags: TagTiers) -> BulkSaveResult:
        """Merge tier values into several items, keeping existing ones."""
        return self._apply_each(
            item_ids,
            lambda record: record.model_copy(update={"tags": record.tags.merged(tags)}),
        )

    def _apply_each(
        self, item_ids: Iterable[str], change: Callable[[ItemRecord], ItemRecord]
    ) -> BulkSaveResult:
        result = BulkSaveResult()
        for item_id in item_ids:
            record = self.items.get(item_id)
            if record is None:
                result.failed.append(item_id)
                continue
            updated = change(record)
            (result.saved if self.items.save(item_id, updated) else result.failed).append(item_id)
        if result.failed:
            logger.warning(f"{len(result.failed)} of {len(result.saved) + len(result.failed)} items not updated")
        return result

    def search(self, text: str = "", tags: Iterable[str] = ()) -> list[ItemRecord]:
        """Case-insensitive match on title, display title and author; all tags required."""
        tags = [tag for tag in tags if tag.strip()]
        return [record for record in self.items.list_all() if matches_search(record, text, tags)]

    def prune_missing(self) -> list[str]:
        """Delete records whose folder is gone from disk. Returns the removed ids."""
        removed = []
        for record_id, entry in list(self.items.index.items.items()):
            if Path(entry.folder_path).is_dir():
                continue
            if self.items.delete(record_id):
                removed.append(record_id)
        if removed:
            self.progress.forget(removed)
            logger.info(f"[-] Pruned {len(removed)} items with missing folders")
        return removed

    # --- Reading progress ---

    def set_progress(self, item_id: str, page: int) -> bool:
        """Record the reading position in the progress file and on the item."""
        if page < 0:
            raise ValueError(f"Page must not be negative: {page}")
        if not self.progress.set_page(item_id, page):
            return False
        record = self.items.get(item_id)
        if record is None or record.total_pages == 0:
            return True
        clamped = min(max(page, 1), record.total_pages)
        if clamped == record.current_page:
            return True
        return self.items.save(item_id, record.model_copy(update={"current_page": clamped}))

    # --- Export / import ---

    def export_data(self) -> dict[str, Any]:
        """Whole-library snapshot as a JSON-ready dict."""
        return {
            "schemaVersion": CURRENT_SCHEMA_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "items": [record.to_json_dict() for record in self.items.list_all()],
            "taxonomy": self.taxonomy.get_catalog().to_json_dict(),
            "settings": self.settings.load().to_json_dict(),
            "progress": self.progress.dump(self.progress.load()),
            "tagAssignments": self.tag_assignments.dump(self.tag_assignments.load()),
        }

    def import_data(self, payload: dict[str, Any]) -> BulkSaveResult:
        """Load a snapshot produced by export_data.

        Items are validated one by one; invalid ones are reported in `failed`.
        The other documents are replaced when present. Raises ValueError (or
        pydantic.ValidationError) when a document section is malformed.
        """
        if not isinstance(payload, dict):
            raise ValueError("Import payload must be a JSON object")

        records: list[ItemRecord] = []
        failed: list[str] = []
        for raw in payload.get("items") or []:
            try:
                records.append(ItemRecord.from_storage(raw))
            except (ValidationError, SchemaVersionError) as exc:
                label = raw.get("id", "?") if isinstance(raw, dict) else "?"
                logger.warning(f"✗ Skipping imported item {label}: {exc}")
                failed.append(str(label))

        if "taxonomy" in payload:
            self.taxonomy.set_catalog(TaxonomyCatalog.model_validate(payload["taxonomy"]))
        if "settings" in payload:
            self.settings.save(self.settings.parse(payload["settings"]))
        if "progress" in payload:
            self.progress.save(self.progress.parse(payload["progress"]))
        if "tagAssignments" in payload:
            self.tag_assignments.save(self.tag_assignments.parse(payload["tagAssignments"]))

        result = self.items.save_many(records)
        result.failed.extend(failed)
        logger.info(f"✓ Imported {result.count} items, {len(result.failed)} failed")
        return result

    # --- Tag assignments ---

    def set_tag_assignments(self, assignments: dict[str, TaxonomyCatalog]) -> bool:
        unknown = set(assignments) - set(TAG_TIERS)
        if unknown:
            raise ValueError(f"Unknown tag tiers: {sorted(unknown)}")
        return self.tag_assignments.save(assignments)
