import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from shelf.entity_store import EntityStore
from shelf.models import ItemRecord


def _record(item_id: str, folder: str = "/lib/Series", title: str = "Series") -> ItemRecord:
    pages = [f"{folder}/001.jpg", f"{folder}/002.jpg"]
    return ItemRecord(
        id=item_id,
        title=title,
        display_title=title,
        author="Author",
        total_pages=len(pages),
        pages=pages,
        folder_path=folder,
        last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _store(tmp_path: Path) -> EntityStore[ItemRecord]:
    store = EntityStore(tmp_path / "data", ItemRecord)
    store.initialize()
    return store


def _read(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_initialize_creates_layout(tmp_path):
    store = _store(tmp_path)

    assert store.collection_dir.is_dir()
    index = _read(store.index_path)
    assert index["items"] == {}
    assert index["totalItems"] == 0
    assert index["lastScan"] is None
    assert index["schemaVersion"] == 1


def test_use_before_initialize_raises(tmp_path):
    store = EntityStore(tmp_path / "data", ItemRecord)

    with pytest.raises(RuntimeError):
        store.get("series-0-abc")
    with pytest.raises(RuntimeError):
        store.save("series-0-abc", _record("series-0-abc"))
    with pytest.raises(RuntimeError):
        store.list_all()


def test_save_and_get_roundtrip(tmp_path):
    store = _store(tmp_path)
    record = _record("series-0-abc")

    assert store.save(record.id, record)

    loaded = store.get(record.id)
    assert loaded == record
    raw = _read(store.collection_dir / "item_series-0-abc.json")
    assert raw["folderPath"] == "/lib/Series"
    assert raw["totalPages"] == 2
    entry = _read(store.index_path)["items"]["series-0-abc"]
    assert entry["title"] == "Series"
    assert entry["folderPath"] == "/lib/Series"
    assert _read(store.index_path)["totalItems"] == 1


def test_get_missing_is_none(tmp_path):
    store = _store(tmp_path)

    assert store.get("nothing-0-here") is None
    assert store.get("../escape") is None


def test_save_rejects_invalid_or_mismatched_id(tmp_path):
    store = _store(tmp_path)

    with pytest.raises(ValueError):
        store.save("../escape", _record("series-0-abc"))
    with pytest.raises(ValueError):
        store.save("other-0-abc", _record("series-0-abc"))


def test_save_returns_false_on_io_error(tmp_path):
    store = _store(tmp_path)

    with patch("shelf.entity_store.atomic_write_json", side_effect=OSError("disk full")):
        assert store.save("series-0-abc", _record("series-0-abc")) is False

    assert store.get("series-0-abc") is None
    assert not store.contains("series-0-abc")


def test_corrupt_file_is_skipped_in_listing(tmp_path):
    store = _store(tmp_path)
    store.save("good-0-a", _record("good-0-a", "/lib/Good", "Good"))
    store.save("bad-0-b", _record("bad-0-b", "/lib/Bad", "Bad"))
    (store.collection_dir / "item_bad-0-b.json").write_text("{not json", encoding="utf-8")

    records = store.list_all()

    assert [r.id for r in records] == ["good-0-a"]
    assert store.get("bad-0-b") is None


def test_schema_rejected_file_reads_as_none(tmp_path):
    store = _store(tmp_path)
    record = _record("series-0-abc")
    store.save(record.id, record)
    path = store.collection_dir / "item_series-0-abc.json"
    raw = _read(path)
    raw["schemaVersion"] = 99
    path.write_text(json.dumps(raw), encoding="utf-8")

    assert store.get(record.id) is None


def test_delete_removes_file_and_index_entry(tmp_path):
    store = _store(tmp_path)
    record = _record("series-0-abc")
    store.save(record.id, record)

    assert store.delete(record.id)

    assert not (store.collection_dir / "item_series-0-abc.json").exists()
    assert "series-0-abc" not in _read(store.index_path)["items"]
    assert store.delete(record.id) is False


def test_list_all_skips_index_entries_without_file(tmp_path):
    store = _store(tmp_path)
    record = _record("series-0-abc")
    store.save(record.id, record)
    (store.collection_dir / "item_series-0-abc.json").unlink()

    assert store.list_all() == []


def test_find_by_folder(tmp_path):
    store = _store(tmp_path)
    store.save("a-0-a", _record("a-0-a", "/lib/A", "A"))
    store.save("b-0-b", _record("b-0-b", "/lib/B", "B"))

    assert store.find_by_folder("/lib/B").id == "b-0-b"
    assert store.find_by_folder(Path("/lib/B/")).id == "b-0-b"
    assert store.find_by_folder("/lib/C") is None


def test_save_many_partial_success(tmp_path):
    store = _store(tmp_path)
    records = [_record("a-0-a", "/lib/A", "A"), _record("b-0-b", "/lib/B", "B")]
    real_save = store.save

    def failing_save(record_id, record):
        if record_id == "a-0-a":
            return False
        return real_save(record_id, record)

    with patch.object(store, "save", side_effect=failing_save):
        result = store.save_many(records, mark_scan=True)

    assert result.saved == ["b-0-b"]
    assert result.failed == ["a-0-a"]
    assert result.count == 1
    index = _read(store.index_path)
    assert index["lastScan"] is not None
    assert index["totalItems"] == 1


def test_rebuild_index_restores_consistency(tmp_path):
    store = _store(tmp_path)
    store.save("a-0-a", _record("a-0-a", "/lib/A", "A"))
    store.save("b-0-b", _record("b-0-b", "/lib/B", "B"))
    # Orphan file without index entry, and index entry without file
    store.index.items.pop("a-0-a")
    (store.collection_dir / "item_b-0-b.json").unlink()

    added, removed = store.rebuild_index()

    assert (added, removed) == (1, 1)
    assert store.list_ids() == ["a-0-a"]
    assert _read(store.index_path)["totalItems"] == 1


def test_corrupt_index_is_rebuilt_on_initialize(tmp_path):
    store = _store(tmp_path)
    store.save("a-0-a", _record("a-0-a", "/lib/A", "A"))
    store.index_path.write_text("garbage", encoding="utf-8")

    reopened = EntityStore(tmp_path / "data", ItemRecord)
    reopened.initialize()

    assert reopened.list_ids() == ["a-0-a"]


def test_legacy_index_keys_are_upgraded(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "library_index.json").write_text(
        json.dumps(
            {
                "comics": {
                    "a-0-a": {
                        "title": "A",
                        "folderPath": "/lib/A",
                        "lastModified": "2023-05-01T10:00:00Z",
                    }
                },
                "lastScan": "",
                "totalComics": 1,
            }
        ),
        encoding="utf-8",
    )

    store = EntityStore(data_dir, ItemRecord)
    store.initialize()

    assert store.list_ids() == ["a-0-a"]
    assert store.index.last_scan is None


def test_clear_and_info(tmp_path):
    store = _store(tmp_path)
    store.save("a-0-a", _record("a-0-a", "/lib/A", "A"))

    info = store.info()
    assert info["totalItems"] == 1
    assert info["storagePath"] == str(tmp_path / "data")

    store.clear()

    assert store.list_ids() == []
    assert list(store.collection_dir.glob("item_*.json")) == []


def test_no_temp_files_left_behind(tmp_path):
    store = _store(tmp_path)
    store.save("a-0-a", _record("a-0-a", "/lib/A", "A"))

    assert list((tmp_path / "data").rglob("*.tmp")) == []
