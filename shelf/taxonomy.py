"""Tag catalog (taxonomy.json) with usage-checked deletion.

Item tags are plain strings, not references into the catalog. Deleting a
catalog value is refused while any item still carries it; the caller gets the
affected items back and decides what to do with them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .entity_store import EntityStore
from .logging_config import get_logger
from .models import (
    AffectedItem,
    ItemRecord,
    TagDeletionResult,
    TaxonomyCatalog,
)
from .utils import atomic_write_json, read_json

logger = get_logger(__name__)

TAXONOMY_FILENAME = "taxonomy.json"


class TaxonomyStore:
    def __init__(self, data_dir: Path, items: EntityStore[ItemRecord]):
        self.path = Path(data_dir) / TAXONOMY_FILENAME
        self.items = items

    def initialize(self) -> None:
        if not self.path.exists():
            self.set_catalog(TaxonomyCatalog())

    # --- Catalog ---

    def get_catalog(self) -> TaxonomyCatalog:
        if not self.path.exists():
            return TaxonomyCatalog()
        try:
            raw: Any = read_json(self.path)
            # Older files carried extra keys next to the three categories.
            return TaxonomyCatalog.model_validate(raw)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"✗ {self.path.name} unreadable: {exc}")
        except ValidationError as exc:
            logger.error(f"✗ {self.path.name} rejected by schema: {exc}")
        return TaxonomyCatalog()

    def set_catalog(self, catalog: TaxonomyCatalog) -> bool:
        try:
            atomic_write_json(self.path, catalog.to_json_dict())
        except OSError as exc:
            logger.error(f"✗ Failed to write {self.path.name}: {exc}")
            return False
        return True

    def add_tag(self, category: str, value: str) -> bool:
        """Append value to category. False for blanks, duplicates or write errors.

        Raises KeyError for an unknown category.
        """
        catalog = self.get_catalog()
        values = catalog.category(category)
        value = value.strip()
        if not value:
            return False
        if value in values:
            logger.info(f"Tag {value!r} already in {category}")
            return False
        if not self.set_catalog(catalog.with_category(category, values + [value])):
            return False
        logger.info(f"[+] Tag {category}/{value}")
        return True

    def rename_tag(self, category: str, old: str, new: str, cascade: bool = False) -> int:
        """Rename a catalog value in place.

        With cascade, items carrying the old value are rewritten too. Returns
        the number of items updated, or -1 if the catalog was not changed
        (unknown old value, blank or duplicate new value, write error).
        """
        catalog = self.get_catalog()
        values = catalog.category(category)
        new = new.strip()
        if old not in values or not new or (new != old and new in values):
            return -1
        if new == old:
            return 0

        updated = [new if value == old else value for value in values]
        if not self.set_catalog(catalog.with_category(category, updated)):
            return -1
        logger.info(f"[→] Tag {category}/{old} → {new}")

        if not cascade:
            return 0

        count = 0
        for record in self.items.list_all():
            if not record.tags.contains(old):
                continue
            record = record.model_copy(update={"tags": record.tags.replaced(old, new)})
            if self.items.save(record.id, record):
                count += 1
        return count

    # --- Usage-checked deletion ---

    def tag_usage(self, value: str) -> list[AffectedItem]:
        """Items carrying value in any tier, one per folder."""
        affected: list[AffectedItem] = []
        seen: set[str] = set()
        for record in self.items.list_all():
            if not record.tags.contains(value):
                continue
            key = record.folder_path or record.title
            if key in seen:
                continue
            seen.add(key)
            affected.append(
                AffectedItem(id=record.id, title=record.title, folder_path=record.folder_path)
            )
        return affected

    def delete_tag(self, category: str, value: str) -> TagDeletionResult:
        """Remove value from category unless an item still uses it.

        Check-then-act: correct only with a single writer.
        """
        catalog = self.get_catalog()
        values = catalog.category(category)
        if value not in values:
            return TagDeletionResult(status="not_found", category=category, value=value)

        affected = self.tag_usage(value)
        if affected:
            logger.info(f"Tag {category}/{value} in use by {len(affected)} items, not deleted")
            return TagDeletionResult(
                status="in_use", category=category, value=value, affected=affected
            )

        remaining = [v for v in values if v != value]
        if not self.set_catalog(catalog.with_category(category, remaining)):
            return TagDeletionResult(status="failed", category=category, value=value)
        logger.info(f"[-] Tag {category}/{value}")
        return TagDeletionResult(status="deleted", category=category, value=value)
