from pathlib import Path

from fastapi.testclient import TestClient

from shelf.config import LibraryConfig, ShelfConfig, StorageConfig
from shelf.library import Library
from shelf.server import create_app


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00")
    return path


def _client(tmp_path: Path) -> TestClient:
    lib = tmp_path / "Lib"
    _touch(lib / "AuthorA" / "SeriesX" / "1.jpg")
    _touch(lib / "AuthorA" / "SeriesX" / "2.png")
    _touch(lib / "AuthorB" / "a.jpg")
    library = Library(
        ShelfConfig(
            library=LibraryConfig(path=lib, name="Test Library"),
            storage=StorageConfig(data_dir=tmp_path / "data"),
        )
    )
    library.initialize()
    return TestClient(create_app(library))


def _series(client: TestClient) -> dict:
    items = client.get("/api/items").json()
    return next(item for item in items if item["title"] == "SeriesX")


def test_scan_does_not_persist(tmp_path):
    client = _client(tmp_path)

    response = client.post("/api/scan")

    assert response.status_code == 200
    assert len(response.json()["items"]) == 2
    assert client.get("/api/items").json() == []


def test_refresh_and_get_item(tmp_path):
    client = _client(tmp_path)

    body = client.post("/api/refresh", json={}).json()
    assert len(body["saved"]) == 2
    assert body["errors"] == []

    series = _series(client)
    response = client.get(f"/api/items/{series['id']}")
    assert response.status_code == 200
    assert response.json()["totalPages"] == 2
    assert response.json()["displayTitle"] == "AuthorA / SeriesX"


def test_unknown_item_is_404(tmp_path):
    client = _client(tmp_path)

    assert client.get("/api/items/missing-0-x").status_code == 404
    assert client.delete("/api/items/missing-0-x").status_code == 404
    assert client.patch("/api/items/missing-0-x", json={"author": "X"}).status_code == 404


def test_patch_item_and_rename_conflict(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)

    response = client.patch(f"/api/items/{series['id']}", json={"author": "Someone"})
    assert response.status_code == 200
    assert response.json()["author"] == "Someone"

    Path(series["folderPath"]).parent.joinpath("Taken").mkdir()
    response = client.patch(f"/api/items/{series['id']}", json={"title": "Taken"})
    assert response.status_code == 409


def test_put_item_validates_payload(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)

    bad = dict(series, totalPages=5)
    assert client.put(f"/api/items/{series['id']}", json=bad).status_code == 422

    other_id = dict(series, id="other-0-x")
    assert client.put(f"/api/items/{series['id']}", json=other_id).status_code == 422

    edited = dict(series, description="From the UI")
    response = client.put(f"/api/items/{series['id']}", json=edited)
    assert response.status_code == 200
    assert client.get(f"/api/items/{series['id']}").json()["description"] == "From the UI"


def test_delete_item(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)

    assert client.delete(f"/api/items/{series['id']}").status_code == 204
    assert client.get(f"/api/items/{series['id']}").status_code == 404


def test_taxonomy_tag_lifecycle(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)

    assert client.post("/api/taxonomy/personality/tags", json={"value": "brave"}).status_code == 201
    assert client.post("/api/taxonomy/personality/tags", json={"value": "brave"}).status_code == 409
    assert client.post("/api/taxonomy/genre/tags", json={"value": "x"}).status_code == 404

    client.patch(
        f"/api/items/{series['id']}",
        json={"tags": {"protagonist": ["brave"]}},
    )
    response = client.delete("/api/taxonomy/personality/tags/brave")
    assert response.status_code == 409
    affected = response.json()["detail"]["affected"]
    assert [a["id"] for a in affected] == [series["id"]]
    assert client.get("/api/taxonomy").json()["personality"] == ["brave"]

    client.patch(f"/api/items/{series['id']}", json={"tags": {"protagonist": []}})
    response = client.delete("/api/taxonomy/personality/tags/brave")
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"
    assert client.delete("/api/taxonomy/personality/tags/brave").status_code == 404


def test_settings_roundtrip(tmp_path):
    client = _client(tmp_path)

    response = client.put("/api/settings", json={"darkMode": True, "displayMode": "comicbook"})
    assert response.status_code == 200
    assert client.get("/api/settings").json()["darkMode"] is True

    assert client.put("/api/settings", json={"displayMode": "wall"}).status_code == 422


def test_progress_endpoints(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)

    assert client.put(f"/api/progress/{series['id']}", json={"currentPage": 2}).status_code == 200
    progress = client.get("/api/progress").json()
    assert progress[series["id"]]["currentPage"] == 2
    assert client.get(f"/api/items/{series['id']}").json()["currentPage"] == 2

    assert client.put(f"/api/progress/{series['id']}", json={"currentPage": -1}).status_code == 422


def test_incremental_refresh_throttle(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")

    first = client.post("/api/refresh/incremental", json={"caller": "grid"}).json()
    second = client.post("/api/refresh/incremental", json={"caller": "grid"}).json()

    assert first["throttled"] is False
    assert len(first["items"]) == 2
    assert second == {"throttled": True, "items": []}


def test_search_and_storage(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")

    found = client.get("/api/items/search", params={"q": "seriesx"}).json()
    assert [item["title"] for item in found] == ["SeriesX"]
    assert client.get("/api/storage").json()["totalItems"] == 2


def test_rename_endpoint(tmp_path):
    client = _client(tmp_path)
    folder = tmp_path / "Lib" / "AuthorB"

    response = client.post(
        "/api/rename",
        json={"oldTitle": "AuthorB", "newTitle": "AuthorC", "folderPath": str(folder)},
    )

    assert response.status_code == 200
    assert response.json()["folderPath"] == str(tmp_path / "Lib" / "AuthorC")
    response = client.post(
        "/api/rename",
        json={"oldTitle": "AuthorB", "newTitle": "AuthorC", "folderPath": str(folder)},
    )
    assert response.status_code == 409


def test_tag_assignments_endpoints(tmp_path):
    client = _client(tmp_path)

    defaults = client.get("/api/tag-assignments").json()
    assert set(defaults) == {"protagonist", "antagonist", "supporting", "narrative"}

    response = client.put(
        "/api/tag-assignments", json={"protagonist": {"personality": ["brave"]}}
    )
    assert response.status_code == 200
    assert response.json()["protagonist"]["personality"] == ["brave"]

    assert client.put("/api/tag-assignments", json={"sidekick": {}}).status_code == 422


def test_rename_endpoint_updates_the_item_record(tmp_path):
    client = _client(tmp_path)
    client.post("/api/refresh")
    series = _series(client)
    series["author"] = "X"
    client.put(f"/api/items/{series['id']}", json=series)

    response = client.post(
        "/api/rename",
        json={"oldTitle": "SeriesX", "newTitle": "SeriesY", "folderPath": series["folderPath"]},
    )

    assert response.status_code == 200
    new_folder = response.json()["folderPath"]
    item = client.get(f"/api/items/{series['id']}").json()
    assert item["folderPath"] == new_folder
    assert Path(new_folder).is_dir()

    client.post("/api/refresh")
    assert client.post("/api/maintenance/prune").json() == {"removed": []}
    items = client.get("/api/items").json()
    assert [(i["title"], i["author"]) for i in items if i["title"] == "SeriesY"] == [("SeriesY", "X")]
