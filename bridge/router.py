"""FastAPI router exposing the library operations as JSON endpoints.

Mounted under /api by `shelf.server.create_app`. The Library instance lives in
`app.state.library`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request, Response
from pydantic import Field, ValidationError

from shelf.library import Library
from shelf.models import CamelModel, ItemRecord, ItemUpdate, TagTiers, TaxonomyCatalog

router = APIRouter(tags=["library"])


def _library(request: Request) -> Library:
    library = getattr(request.app.state, "library", None)
    if library is None:
        raise HTTPException(status_code=500, detail="Library not configured")
    return library


def _unprocessable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


# --- Request bodies ---


class ScanRequest(CamelModel):
    path: Optional[str] = None
    max_depth: Optional[int] = Field(default=None, ge=0)


class IncrementalRequest(CamelModel):
    path: Optional[str] = None
    caller: str = "default"


class BulkUpdateRequest(CamelModel):
    ids: list[str]
    update: ItemUpdate


class AddTagsRequest(CamelModel):
    ids: list[str]
    tags: TagTiers


class RenameRequest(CamelModel):
    old_title: str
    new_title: str
    folder_path: str


class TagRequest(CamelModel):
    value: str


class TagRenameRequest(CamelModel):
    new_value: str
    cascade: bool = False


class ProgressRequest(CamelModel):
    current_page: int = Field(ge=0)


def _optional_path(raw: Optional[str]) -> Optional[Path]:
    return Path(raw).expanduser() if raw else None


# --- Scan / refresh ---


@router.post("/scan")
def scan(request: Request, body: Optional[ScanRequest] = None):
    """Scan a folder tree without saving anything."""
    body = body or ScanRequest()
    result = _library(request).scan(_optional_path(body.path), max_depth=body.max_depth)
    return result.to_json_dict()


@router.post("/refresh")
def refresh(request: Request, body: Optional[ScanRequest] = None):
    """Scan, merge with saved metadata and persist."""
    body = body or ScanRequest()
    result = _library(request).refresh(_optional_path(body.path), max_depth=body.max_depth)
    return result.to_json_dict()


@router.post("/refresh/incremental")
def refresh_incremental(request: Request, body: Optional[IncrementalRequest] = None):
    body = body or IncrementalRequest()
    records = _library(request).refresh_incremental(_optional_path(body.path), caller=body.caller)
    if records is None:
        return {"throttled": True, "items": []}
    return {"throttled": False, "items": [r.to_json_dict() for r in records]}


# --- Items ---


@router.get("/items")
def list_items(request: Request):
    return [record.to_json_dict() for record in _library(request).list_items()]


@router.get("/items/search")
def search_items(
    request: Request,
    q: str = "",
    tag: list[str] = Query(default=[]),
):
    return [record.to_json_dict() for record in _library(request).search(q, tag)]


@router.post("/items/bulk")
def bulk_update(request: Request, body: BulkUpdateRequest):
    """Apply author/description/tags to several items (titles are not bulk-edited)."""
    return _library(request).bulk_update(body.ids, body.update).to_json_dict()


@router.post("/items/tags")
def add_tags(request: Request, body: AddTagsRequest):
    return _library(request).add_tags(body.ids, body.tags).to_json_dict()


@router.get("/items/{item_id}")
def get_item(item_id: str, request: Request):
    record = _library(request).get_item(item_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return record.to_json_dict()


@router.put("/items/{item_id}")
def save_item(item_id: str, record: ItemRecord, request: Request):
    if record.id != item_id:
        raise HTTPException(status_code=422, detail="Item id does not match the URL")
    try:
        ok = _library(request).save_item(record)
    except ValueError as exc:
        raise _unprocessable(exc)
    if not ok:
        raise HTTPException(status_code=500, detail="Could not save item")
    return record.to_json_dict()


@router.patch("/items/{item_id}")
def update_item(item_id: str, update: ItemUpdate, request: Request):
    """Edit user fields. A new title renames the folder on disk."""
    library = _library(request)
    if library.get_item(item_id) is None:
        raise HTTPException(status_code=404, detail="Item not found")
    record = library.update_item(item_id, update)
    if record is None:
        raise HTTPException(status_code=409, detail="Folder rename refused or save failed")
    return record.to_json_dict()


@router.delete("/items/{item_id}", status_code=204)
def delete_item(item_id: str, request: Request) -> Response:
    if not _library(request).delete_item(item_id):
        raise HTTPException(status_code=404, detail="Item not found")
    return Response(status_code=204)


@router.post("/rename")
def rename_folder(request: Request, body: RenameRequest):
    new_path = _library(request).rename_folder(body.old_title, body.new_title, Path(body.folder_path))
    if new_path is None:
        raise HTTPException(status_code=409, detail="Folder rename refused")
    return {"folderPath": str(new_path)}


# --- Settings ---


@router.get("/settings")
def get_settings(request: Request):
    return _library(request).get_settings().to_json_dict()


@router.put("/settings")
def set_settings(request: Request, changes: dict[str, Any] = Body(...)):
    try:
        settings = _library(request).set_settings(changes)
    except ValidationError as exc:
        raise _unprocessable(exc)
    if settings is None:
        raise HTTPException(status_code=500, detail="Could not save settings")
    return settings.to_json_dict()


# --- Taxonomy ---


@router.get("/taxonomy")
def get_taxonomy(request: Request):
    return _library(request).get_taxonomy().to_json_dict()


@router.put("/taxonomy")
def set_taxonomy(request: Request, catalog: TaxonomyCatalog):
    if not _library(request).set_taxonomy(catalog):
        raise HTTPException(status_code=500, detail="Could not save taxonomy")
    return catalog.to_json_dict()


@router.get("/taxonomy/usage")
def tag_usage(request: Request, value: str):
    return [item.to_json_dict() for item in _library(request).tag_usage(value)]


@router.post("/taxonomy/{category}/tags", status_code=201)
def add_tag(category: str, request: Request, body: TagRequest):
    try:
        added = _library(request).add_tag(category, body.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown category: {category}")
    if not added:
        raise HTTPException(status_code=409, detail="Tag is blank or already exists")
    return {"category": category, "value": body.value.strip()}


@router.patch("/taxonomy/{category}/tags/{value}")
def rename_tag(category: str, value: str, request: Request, body: TagRenameRequest):
    try:
        updated = _library(request).rename_tag(category, value, body.new_value, cascade=body.cascade)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown category: {category}")
    if updated < 0:
        raise HTTPException(status_code=409, detail="Tag not found or new value not usable")
    return {"updated": updated}


@router.delete("/taxonomy/{category}/tags/{value}")
def delete_tag(category: str, value: str, request: Request):
    """Delete a catalog value; refused with 409 while items still use it."""
    try:
        result = _library(request).delete_tag(category, value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown category: {category}")

    if result.status == "not_found":
        raise HTTPException(status_code=404, detail="Tag not found")
    if result.status == "in_use":
        raise HTTPException(
            status_code=409,
            detail={
                "message": f"Tag is used by {len(result.affected)} items",
                "affected": [item.to_json_dict() for item in result.affected],
            },
        )
    if result.status == "failed":
        raise HTTPException(status_code=500, detail="Could not save taxonomy")
    return result.to_json_dict()


# --- Progress / tag assignments ---


@router.get("/progress")
def get_progress(request: Request):
    library = _library(request)
    return library.progress.dump(library.get_progress())


@router.put("/progress/{item_id}")
def set_progress(item_id: str, request: Request, body: ProgressRequest):
    if not _library(request).set_progress(item_id, body.current_page):
        raise HTTPException(status_code=500, detail="Could not save progress")
    return {"id": item_id, "currentPage": body.current_page}


@router.get("/tag-assignments")
def get_tag_assignments(request: Request):
    library = _library(request)
    return library.tag_assignments.dump(library.get_tag_assignments())


@router.put("/tag-assignments")
def set_tag_assignments(request: Request, assignments: dict[str, TaxonomyCatalog]):
    library = _library(request)
    try:
        ok = library.set_tag_assignments(assignments)
    except ValueError as exc:
        raise _unprocessable(exc)
    if not ok:
        raise HTTPException(status_code=500, detail="Could not save tag assignments")
    return library.tag_assignments.dump(library.get_tag_assignments())


# --- Maintenance ---


@router.get("/storage")
def storage_info(request: Request):
    return _library(request).storage_info()


@router.post("/maintenance/prune")
def prune(request: Request):
    return {"removed": _library(request).prune_missing()}


@router.post("/maintenance/rebuild-index")
def rebuild_index(request: Request):
    added, removed = _library(request).rebuild_index()
    return {"added": added, "removed": removed}


@router.get("/export")
def export_data(request: Request):
    return _library(request).export_data()


@router.post("/import")
def import_data(request: Request, payload: dict[str, Any] = Body(...)):
    try:
        result = _library(request).import_data(payload)
    except (ValueError, ValidationError) as exc:
        raise _unprocessable(exc)
    return result.to_json_dict()
