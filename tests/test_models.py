from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from shelf.models import (
    ItemRecord,
    ItemUpdate,
    SchemaVersionError,
    Settings,
    TagTiers,
    TaxonomyCatalog,
    upgrade_item,
)


def _legacy_item() -> dict:
    return {
        "id": "series-1-abc",
        "title": "Series",
        "author": None,
        "description": None,
        "genre": "Action",
        "groupAuthor": "Somebody",
        "comicGenres": {
            "protagonist": ["brave", "brave"],
            "antagonist": [],
            "supporting": None,
            "narrative": ["quest"],
        },
        "coverImage": "file:///lib/Series/001.jpg",
        "pages": ["file:///lib/Series/001.jpg", "file:///lib/Series/002.jpg"],
        "folderPath": "/lib/Series",
        "lastRead": "2023-04-01T12:00:00.000Z",
        "currentPage": 2,
    }


def test_legacy_item_is_upgraded():
    record = ItemRecord.from_storage(_legacy_item())

    assert record.schema_version == 1
    assert record.tags.protagonist == ["brave"]
    assert record.tags.narrative == ["quest"]
    assert record.tags.supporting == []
    assert record.pages == ["/lib/Series/001.jpg", "/lib/Series/002.jpg"]
    assert record.total_pages == 2
    assert record.cover_image == "/lib/Series/001.jpg"
    assert record.display_title == "Series"
    assert record.author == ""
    assert record.current_page == 2
    assert record.last_modified == datetime(2023, 4, 1, 12, 0, tzinfo=timezone.utc)
    dumped = record.to_json_dict()
    assert "genre" not in dumped
    assert "groupAuthor" not in dumped
    assert "comicGenres" not in dumped


def test_legacy_placeholder_cover_falls_back_to_first_page():
    raw = _legacy_item()
    raw["coverImage"] = "/placeholder.svg"

    record = ItemRecord.from_storage(raw)

    assert record.cover_image == "/lib/Series/001.jpg"


def test_future_schema_version_is_rejected():
    raw = ItemRecord.from_storage(_legacy_item()).to_json_dict()
    raw["schemaVersion"] = 2

    with pytest.raises(SchemaVersionError):
        ItemRecord.from_storage(raw)


def test_non_object_document_is_rejected():
    with pytest.raises(SchemaVersionError):
        upgrade_item(["not", "a", "record"])


def test_legacy_item_without_any_date_is_rejected():
    raw = _legacy_item()
    del raw["lastRead"]

    with pytest.raises(ValidationError):
        ItemRecord.from_storage(raw)


def test_total_pages_must_match_pages():
    with pytest.raises(ValidationError):
        ItemRecord(
            id="x-0-a",
            title="X",
            total_pages=3,
            pages=["/x/1.jpg"],
            folder_path="/x",
            last_modified=datetime.now(timezone.utc),
        )


def test_blank_id_is_rejected():
    with pytest.raises(ValidationError):
        ItemRecord(
            id="  ",
            title="X",
            folder_path="/x",
            last_modified=datetime.now(timezone.utc),
        )


def test_camel_case_aliases():
    record = ItemRecord.model_validate(
        {
            "id": "x-0-a",
            "title": "X",
            "displayTitle": "A / X",
            "totalPages": 1,
            "pages": ["/x/1.jpg"],
            "folderPath": "/x",
            "lastModified": "2024-01-01T00:00:00Z",
        }
    )

    dumped = record.to_json_dict()
    assert dumped["displayTitle"] == "A / X"
    assert dumped["coverImage"] == "/x/1.jpg"
    assert dumped["currentPage"] == 1


def test_tag_tiers_helpers():
    tags = TagTiers(protagonist=[" brave ", "brave", ""], narrative=["quest"])

    assert tags.protagonist == ["brave"]
    assert tags.contains("quest")
    assert not tags.contains("villain")
    merged = tags.merged(TagTiers(protagonist=["smart", "brave"]))
    assert merged.protagonist == ["brave", "smart"]
    assert tags.replaced("quest", "journey").narrative == ["journey"]
    assert TagTiers().is_empty()
    with pytest.raises(KeyError):
        tags.tier("villains")


def test_catalog_with_category_dedupes():
    catalog = TaxonomyCatalog(personality=["brave"])

    updated = catalog.with_category("personality", ["brave", "calm", "brave"])

    assert updated.personality == ["brave", "calm"]
    assert catalog.personality == ["brave"]
    with pytest.raises(KeyError):
        catalog.category("genre")


def test_settings_keep_unknown_keys_and_map_legacy_ones():
    settings = Settings.model_validate(
        {
            "mainDirectory": "/lib",
            "lastSelectedComic": "x-0-a",
            "fitScreen": True,
            "displayMode": "comicbook",
            "customFlag": 42,
        }
    )

    dumped = settings.to_json_dict()
    assert dumped["rootPath"] == "/lib"
    assert dumped["lastSelectedItem"] == "x-0-a"
    assert dumped["autoFullscreen"] is True
    assert dumped["displayMode"] == "comicbook"
    assert dumped["customFlag"] == 42
    assert "mainDirectory" not in dumped


def test_settings_reject_unknown_display_mode():
    with pytest.raises(ValidationError):
        Settings.model_validate({"displayMode": "carousel"})


def test_item_update_accepts_partial_input():
    update = ItemUpdate.model_validate({"author": "X"})

    assert update.author == "X"
    assert update.title is None
    assert update.tags is None
