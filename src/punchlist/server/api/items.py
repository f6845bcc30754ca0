"""Punchlist item API routes, including item notes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from punchlist.core.types import EntityType
from punchlist.server.api.deps import get_db, get_idempotency_key
from punchlist.server.database import Database, InvalidReferenceError
from punchlist.server.schemas import (
    ItemCreateRequest,
    ItemResponse,
    ItemUpdateRequest,
    NoteCreateRequest,
    NoteResponse,
    PhotoResponse,
    item_to_response,
    note_to_response,
    photo_to_response,
)

router = APIRouter(prefix="/api/items", tags=["items"])


def _not_found(item_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Punchlist item {item_id} not found",
    )


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(
    request: ItemCreateRequest,
    response: Response,
    db: Database = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> ItemResponse:
    """Create a punchlist item in an existing project."""
    try:
        item, created = db.create(
            EntityType.PUNCHLIST_ITEM, request.model_dump(mode="json"), idempotency_key
        )
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if not created:
        response.status_code = status.HTTP_200_OK
    return item_to_response(item)


@router.get("/{item_id}", response_model=ItemResponse)
def get_item(item_id: str, db: Database = Depends(get_db)) -> ItemResponse:
    """Get a punchlist item by id."""
    item = db.get(EntityType.PUNCHLIST_ITEM, item_id)
    if item is None:
        raise _not_found(item_id)
    return item_to_response(item)


@router.patch("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: str,
    request: ItemUpdateRequest,
    db: Database = Depends(get_db),
) -> ItemResponse:
    """Apply a partial update to a punchlist item."""
    try:
        item = db.update(
            EntityType.PUNCHLIST_ITEM, item_id, request.model_dump(mode="json", exclude_unset=True)
        )
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if item is None:
        raise _not_found(item_id)
    return item_to_response(item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: str, db: Database = Depends(get_db)) -> Response:
    """Delete a punchlist item with its photos and notes."""
    if not db.delete(EntityType.PUNCHLIST_ITEM, item_id):
        raise _not_found(item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{item_id}/photos", response_model=list[PhotoResponse])
def list_item_photos(item_id: str, db: Database = Depends(get_db)) -> list[PhotoResponse]:
    """List the photos of a punchlist item."""
    if db.get(EntityType.PUNCHLIST_ITEM, item_id) is None:
        raise _not_found(item_id)
    return [photo_to_response(p) for p in db.list_photos(item_id)]


# === Notes ===


@router.get("/{item_id}/notes", response_model=list[NoteResponse])
def list_item_notes(item_id: str, db: Database = Depends(get_db)) -> list[NoteResponse]:
    if db.get(EntityType.PUNCHLIST_ITEM, item_id) is None:
        raise _not_found(item_id)
    return [note_to_response(n) for n in db.list_notes(item_id)]


@router.post(
    "/{item_id}/notes",
    response_model=NoteResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_item_note(
    item_id: str,
    request: NoteCreateRequest,
    db: Database = Depends(get_db),
) -> NoteResponse:
    """Add a note to a punchlist item."""
    try:
        note = db.create_note(item_id, request.content, request.created_by)
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return note_to_response(note)
