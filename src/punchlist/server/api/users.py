"""User API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import IntegrityError

from punchlist.core.types import EntityType
from punchlist.server.api.deps import get_db, get_idempotency_key
from punchlist.server.database import Database
from punchlist.server.schemas import (
    UserCreateRequest,
    UserResponse,
    UserUpdateRequest,
    user_to_response,
)

router = APIRouter(prefix="/api/users", tags=["users"])


def _not_found(user_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"User {user_id} not found",
    )


def _duplicate_email(email: str | None) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"User with email '{email}' already exists",
    )


@router.get("", response_model=list[UserResponse])
def list_users(db: Database = Depends(get_db)) -> list[UserResponse]:
    """List all users."""
    return [user_to_response(u) for u in db.list_users()]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    request: UserCreateRequest,
    response: Response,
    db: Database = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> UserResponse:
    """Create a user."""
    try:
        user, created = db.create(EntityType.USER, request.model_dump(mode="json"), idempotency_key)
    except IntegrityError as e:
        raise _duplicate_email(request.email) from e
    if not created:
        response.status_code = status.HTTP_200_OK
    return user_to_response(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: str, db: Database = Depends(get_db)) -> UserResponse:
    user = db.get(EntityType.USER, user_id)
    if user is None:
        raise _not_found(user_id)
    return user_to_response(user)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    request: UserUpdateRequest,
    db: Database = Depends(get_db),
) -> UserResponse:
    """Apply a partial update to a user."""
    try:
        user = db.update(EntityType.USER, user_id, request.model_dump(mode="json", exclude_unset=True))
    except IntegrityError as e:
        raise _duplicate_email(request.email) from e
    if user is None:
        raise _not_found(user_id)
    return user_to_response(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, db: Database = Depends(get_db)) -> Response:
    if not db.delete(EntityType.USER, user_id):
        raise _not_found(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
