"""Pydantic schemas for everything Komi Shelf writes to disk or returns.

On-disk JSON uses camelCase keys; attributes are snake_case. Documents carry a
`schemaVersion`; loaders upgrade older layouts and refuse newer ones instead of
guessing at missing fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

CURRENT_SCHEMA_VERSION = 1

TAG_TIERS = ("protagonist", "antagonist", "supporting", "narrative")
CATALOG_CATEGORIES = ("personality", "verb", "plot")

_PLACEHOLDER_COVER = "/placeholder.svg"


class SchemaVersionError(ValueError):
    """Raised when a stored document cannot be brought to the current schema."""


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _clean_values(values: list[str]) -> list[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    seen: set[str] = set()
    out = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


# --- Tags ---


class TagTiers(CamelModel):
    """Tag values of one item, grouped by the role they describe."""

    protagonist: list[str] = Field(default_factory=list)
    antagonist: list[str] = Field(default_factory=list)
    supporting: list[str] = Field(default_factory=list)
    narrative: list[str] = Field(default_factory=list)

    @field_validator(*TAG_TIERS, mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator(*TAG_TIERS)
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _clean_values(value)

    def tier(self, name: str) -> list[str]:
        if name not in TAG_TIERS:
            raise KeyError(f"Unknown tag tier: {name}")
        return getattr(self, name)

    def contains(self, value: str) -> bool:
        return any(value in self.tier(name) for name in TAG_TIERS)

    def merged(self, other: TagTiers) -> TagTiers:
        return TagTiers(**{name: self.tier(name) + other.tier(name) for name in TAG_TIERS})

    def replaced(self, old: str, new: str) -> TagTiers:
        return TagTiers(
            **{
                name: [new if value == old else value for value in self.tier(name)]
                for name in TAG_TIERS
            }
        )

    def is_empty(self) -> bool:
        return not any(self.tier(name) for name in TAG_TIERS)


class TaxonomyCatalog(CamelModel):
    """Catalog of available tag values per category.

    Also used for tag assignment presets (one catalog-shaped selection per tier).
    """

    personality: list[str] = Field(default_factory=list)
    verb: list[str] = Field(default_factory=list)
    plot: list[str] = Field(default_factory=list)

    @field_validator(*CATALOG_CATEGORIES, mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator(*CATALOG_CATEGORIES)
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _clean_values(value)

    def category(self, name: str) -> list[str]:
        if name not in CATALOG_CATEGORIES:
            raise KeyError(f"Unknown taxonomy category: {name}")
        return getattr(self, name)

    def with_category(self, name: str, values: list[str]) -> TaxonomyCatalog:
        self.category(name)
        return self.model_copy(update={name: _clean_values(values)})


# --- Item records ---


class ItemRecord(CamelModel):
    """One collection unit: a folder of page images plus user metadata."""

    schema_version: int = CURRENT_SCHEMA_VERSION
    id: str
    title: str
    display_title: str = ""
    author: str = ""
    description: str = ""
    tags: TagTiers = Field(default_factory=TagTiers)
    cover_image: Optional[str] = None
    total_pages: int = 0
    pages: list[str] = Field(default_factory=list)
    folder_path: str
    last_modified: datetime
    current_page: int = 1

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("id must not be blank")
        return value

    @model_validator(mode="after")
    def _check_pages(self) -> ItemRecord:
        if self.schema_version != CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"schemaVersion {self.schema_version} is not {CURRENT_SCHEMA_VERSION}"
            )
        if self.total_pages != len(self.pages):
            raise ValueError(
                f"totalPages ({self.total_pages}) does not match pages ({len(self.pages)})"
            )
        if self.cover_image is None and self.pages:
            self.cover_image = self.pages[0]
        return self

    @classmethod
    def from_storage(cls, raw: Any) -> ItemRecord:
        """Validate a stored document, upgrading older schema versions first."""
        return cls.model_validate(upgrade_item(raw))


def _strip_file_url(locator: Any) -> Any:
    if isinstance(locator, str) and locator.startswith("file://"):
        return locator[len("file://"):]
    return locator


def _check_version(raw: Any, kind: str) -> int:
    if not isinstance(raw, dict):
        raise SchemaVersionError(f"{kind} document is not a JSON object")
    version = raw.get("schemaVersion", 0)
    if not isinstance(version, int) or isinstance(version, bool):
        raise SchemaVersionError(f"{kind} schemaVersion is not an integer: {version!r}")
    if version > CURRENT_SCHEMA_VERSION:
        raise SchemaVersionError(
            f"{kind} schemaVersion {version} is newer than supported {CURRENT_SCHEMA_VERSION}"
        )
    return version


def upgrade_item(raw: Any) -> dict[str, Any]:
    """Bring a stored item document to the current schema.

    Version 0 is the unversioned layout: tiers under `comicGenres`, a legacy
    single `genre`, `file://` page URLs and no `lastModified`.
    """
    version = _check_version(raw, "Item")
    if version == CURRENT_SCHEMA_VERSION:
        return raw

    data = dict(raw)
    genres = data.pop("comicGenres", None)
    if not isinstance(genres, dict):
        genres = {}
    data["tags"] = {tier: genres.get(tier) or [] for tier in TAG_TIERS}
    last_read = data.pop("lastRead", None)
    for legacy_key in ("genre", "groupAuthor", "lastReadDate", "depth"):
        data.pop(legacy_key, None)

    pages = [_strip_file_url(p) for p in data.get("pages") or []]
    data["pages"] = pages
    data.setdefault("totalPages", len(pages))
    cover = _strip_file_url(data.get("coverImage"))
    data["coverImage"] = None if cover in (None, "", _PLACEHOLDER_COVER) else cover

    if "lastModified" not in data and last_read is not None:
        data["lastModified"] = last_read
    data.setdefault("displayTitle", data.get("title", ""))
    if data.get("author") is None:
        data["author"] = ""
    if data.get("description") is None:
        data["description"] = ""

    data["schemaVersion"] = CURRENT_SCHEMA_VERSION
    return data


# --- Index ---


class IndexEntry(CamelModel):
    title: str
    folder_path: str
    last_modified: datetime


class LibraryIndex(CamelModel):
    schema_version: int = CURRENT_SCHEMA_VERSION
    items: dict[str, IndexEntry] = Field(default_factory=dict)
    last_scan: Optional[datetime] = None
    total_items: int = 0

    @field_validator("last_scan", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @classmethod
    def from_storage(cls, raw: Any) -> LibraryIndex:
        version = _check_version(raw, "Index")
        if version < CURRENT_SCHEMA_VERSION:
            raw = dict(raw)
            raw["items"] = raw.pop("comics", raw.get("items", {}))
            raw["totalItems"] = raw.pop("totalComics", raw.get("totalItems", 0))
            raw["schemaVersion"] = CURRENT_SCHEMA_VERSION
        return cls.model_validate(raw)


# --- Settings / progress ---


_LEGACY_SETTINGS_KEYS = {
    "mainDirectory": "rootPath",
    "lastSelectedComic": "lastSelectedItem",
    "fitScreen": "autoFullscreen",
}


class Settings(CamelModel):
    """User preferences. Unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    root_path: Optional[str] = None
    display_mode: Literal["comicbook", "comictree"] = "comictree"
    dark_mode: bool = False
    last_selected_item: Optional[str] = None
    reader_mode: Optional[str] = None
    auto_fullscreen: bool = False

    @model_validator(mode="before")
    @classmethod
    def _rename_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for old, new in _LEGACY_SETTINGS_KEYS.items():
                if old in data and new not in data:
                    data[new] = data.pop(old)
        return data

    @classmethod
    def aliased_keys(cls, changes: dict[str, Any]) -> dict[str, Any]:
        """Rewrite field names and legacy keys in changes to their JSON aliases."""
        aliased = {}
        for key, value in changes.items():
            key = _LEGACY_SETTINGS_KEYS.get(key, key)
            field = cls.model_fields.get(key)
            if field is not None and field.alias:
                key = field.alias
            aliased[key] = value
        return aliased


class ProgressEntry(CamelModel):
    current_page: int = Field(default=1, ge=0)
    last_read: datetime


def default_tag_assignments() -> dict[str, TaxonomyCatalog]:
    return {tier: TaxonomyCatalog() for tier in TAG_TIERS}


# --- Operation inputs and results ---


class ItemUpdate(CamelModel):
    """User edits to an item. Fields left as None are not touched."""

    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[TagTiers] = None


class ScanResult(CamelModel):
    items: list[ItemRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)


class BulkSaveResult(CamelModel):
    saved: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.saved)


class RefreshResult(CamelModel):
    items: list[ItemRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    saved: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class AffectedItem(CamelModel):
    id: str
    title: str
    folder_path: str


class TagDeletionResult(CamelModel):
    status: Literal["deleted", "in_use", "not_found", "failed"]
    category: str
    value: str
    affected: list[AffectedItem] = Field(default_factory=list)

    @property
    def deleted(self) -> bool:
        return self.status == "deleted"
