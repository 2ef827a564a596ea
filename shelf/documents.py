"""Single-file JSON documents kept beside the item store.

settings.json, reading-progress.json and tag_assignments.json are each one
document rewritten whole on save. A missing file reads as the default value;
an unreadable one is logged and also reads as the default, so a damaged
preferences file never blocks the library.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from .logging_config import get_logger
from .models import (
    CATALOG_CATEGORIES,
    TAG_TIERS,
    ProgressEntry,
    SchemaVersionError,
    Settings,
    TaxonomyCatalog,
    default_tag_assignments,
)
from .utils import atomic_write_json, read_json

logger = get_logger(__name__)

SETTINGS_FILENAME = "settings.json"
PROGRESS_FILENAME = "reading-progress.json"
TAG_ASSIGNMENTS_FILENAME = "tag_assignments.json"

D = TypeVar("D")


class JsonDocument(Generic[D]):
    """A typed JSON document at a fixed path."""

    filename: str = ""

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / self.filename

    def default(self) -> D:
        raise NotImplementedError

    def parse(self, raw: Any) -> D:
        raise NotImplementedError

    def dump(self, value: D) -> Any:
        raise NotImplementedError

    def initialize(self) -> None:
        """Write the default document if the file does not exist yet."""
        if not self.path.exists():
            self.save(self.default())

    def load(self) -> D:
        if not self.path.exists():
            return self.default()
        try:
            return self.parse(read_json(self.path))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"✗ {self.path.name} unreadable: {exc}")
        except (ValidationError, SchemaVersionError) as exc:
            logger.error(f"✗ {self.path.name} rejected by schema: {exc}")
        return self.default()

    def save(self, value: D) -> bool:
        try:
            atomic_write_json(self.path, self.dump(value))
        except OSError as exc:
            logger.error(f"✗ Failed to write {self.path.name}: {exc}")
            return False
        return True


class SettingsStore(JsonDocument[Settings]):
    filename = SETTINGS_FILENAME

    def default(self) -> Settings:
        return Settings()

    def parse(self, raw: Any) -> Settings:
        return Settings.model_validate(raw)

    def dump(self, value: Settings) -> Any:
        return value.to_json_dict()

    def update(self, changes: dict[str, Any]) -> Optional[Settings]:
        """Merge changes into the stored settings. None if the write failed."""
        merged = {**self.load().to_json_dict(), **Settings.aliased_keys(changes)}
        settings = Settings.model_validate(merged)
        return settings if self.save(settings) else None


_progress_adapter = TypeAdapter(dict[str, ProgressEntry])


class ProgressStore(JsonDocument[dict[str, ProgressEntry]]):
    """Reading position per item id."""

    filename = PROGRESS_FILENAME

    def default(self) -> dict[str, ProgressEntry]:
        return {}

    def parse(self, raw: Any) -> dict[str, ProgressEntry]:
        return _progress_adapter.validate_python(raw)

    def dump(self, value: dict[str, ProgressEntry]) -> Any:
        return _progress_adapter.dump_python(value, mode="json", by_alias=True)

    def get(self, item_id: str) -> Optional[ProgressEntry]:
        return self.load().get(item_id)

    def set_page(self, item_id: str, page: int) -> bool:
        progress = self.load()
        progress[item_id] = ProgressEntry(
            current_page=page, last_read=datetime.now(timezone.utc)
        )
        return self.save(progress)

    def move(self, old_id: str, new_id: str) -> bool:
        """Carry an entry over to a new item id (after a re-key)."""
        progress = self.load()
        entry = progress.pop(old_id, None)
        if entry is None or new_id in progress:
            return True
        progress[new_id] = entry
        return self.save(progress)

    def forget(self, item_ids: list[str]) -> bool:
        progress = self.load()
        dropped = [i for i in item_ids if progress.pop(i, None) is not None]
        if not dropped:
            return True
        return self.save(progress)


_assignments_adapter = TypeAdapter(dict[str, TaxonomyCatalog])


class TagAssignmentStore(JsonDocument[dict[str, TaxonomyCatalog]]):
    """Default catalog selection offered per tag tier."""

    filename = TAG_ASSIGNMENTS_FILENAME

    def default(self) -> dict[str, TaxonomyCatalog]:
        return default_tag_assignments()

    def parse(self, raw: Any) -> dict[str, TaxonomyCatalog]:
        parsed = _assignments_adapter.validate_python(raw)
        unknown = set(parsed) - set(TAG_TIERS)
        if unknown:
            logger.warning(f"Ignoring unknown tiers in {self.filename}: {sorted(unknown)}")
        assignments = default_tag_assignments()
        assignments.update({tier: parsed[tier] for tier in TAG_TIERS if tier in parsed})
        return assignments

    def dump(self, value: dict[str, TaxonomyCatalog]) -> Any:
        return {
            tier: {
                category: value.get(tier, TaxonomyCatalog()).category(category)
                for category in CATALOG_CATEGORIES
            }
            for tier in TAG_TIERS
        }
