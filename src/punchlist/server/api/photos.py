"""Photo API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from punchlist.core.types import EntityType
from punchlist.server.api.deps import get_db, get_idempotency_key
from punchlist.server.database import Database, InvalidReferenceError
from punchlist.server.schemas import (
    PhotoCreateRequest,
    PhotoResponse,
    PhotoUpdateRequest,
    photo_to_response,
)

router = APIRouter(prefix="/api/photos", tags=["photos"])


def _not_found(photo_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Photo {photo_id} not found",
    )


@router.post("", response_model=PhotoResponse, status_code=status.HTTP_201_CREATED)
def create_photo(
    request: PhotoCreateRequest,
    response: Response,
    db: Database = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> PhotoResponse:
    """Attach a photo to a punchlist item."""
    try:
        photo, created = db.create(
            EntityType.PHOTO, request.model_dump(mode="json"), idempotency_key
        )
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if not created:
        response.status_code = status.HTTP_200_OK
    return photo_to_response(photo)


@router.get("/{photo_id}", response_model=PhotoResponse)
def get_photo(photo_id: str, db: Database = Depends(get_db)) -> PhotoResponse:
    photo = db.get(EntityType.PHOTO, photo_id)
    if photo is None:
        raise _not_found(photo_id)
    return photo_to_response(photo)


@router.patch("/{photo_id}", response_model=PhotoResponse)
def update_photo(
    photo_id: str,
    request: PhotoUpdateRequest,
    db: Database = Depends(get_db),
) -> PhotoResponse:
    """Update the caption or annotations of a photo."""
    photo = db.update(
        EntityType.PHOTO, photo_id, request.model_dump(mode="json", exclude_unset=True)
    )
    if photo is None:
        raise _not_found(photo_id)
    return photo_to_response(photo)


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_photo(photo_id: str, db: Database = Depends(get_db)) -> Response:
    if not db.delete(EntityType.PHOTO, photo_id):
        raise _not_found(photo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
