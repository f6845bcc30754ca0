"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from punchlist.core.types import ItemStatus, Priority, ProjectStatus, Trade, UserRole
from punchlist.server.models import Note, Photo, Project, PunchlistItem, User

# === User schemas ===


class UserCreateRequest(BaseModel):
    """Request body for user creation."""

    email: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.CONTRACTOR
    company: str = ""
    phone: str | None = None
    is_active: bool = True


class UserUpdateRequest(BaseModel):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole | None = None
    company: str | None = None
    phone: str | None = None
    is_active: bool | None = None


class UserResponse(BaseModel):
    """User data in responses."""

    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: str
    company: str
    phone: str | None
    is_active: bool
    created_at: str
    updated_at: str


# === Project schemas ===


class ProjectCreateRequest(BaseModel):
    """Request body for project creation."""

    name: str = Field(min_length=1)
    description: str | None = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    client_name: str = ""
    start_date: str | None = None
    end_date: str | None = None
    status: ProjectStatus = ProjectStatus.PLANNING
    budget: float | None = None
    notes: str | None = None
    created_by: str | None = None
    assigned_user_ids: list[str] = Field(default_factory=list)


class ProjectUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    client_name: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    status: ProjectStatus | None = None
    budget: float | None = None
    notes: str | None = None
    assigned_user_ids: list[str] | None = None


class ProjectResponse(BaseModel):
    """Project data in responses."""

    id: str
    name: str
    description: str | None
    address: str
    city: str
    state: str
    zip_code: str
    client_name: str
    start_date: str | None
    end_date: str | None
    status: str
    budget: float | None
    notes: str | None
    created_by: str | None
    assigned_user_ids: list[str]
    created_at: str
    updated_at: str


# === Punchlist item schemas ===


class ItemCreateRequest(BaseModel):
    """Request body for punchlist item creation."""

    project_id: str
    title: str = Field(min_length=1)
    description: str = ""
    location: str = ""
    trade: Trade = Trade.GENERAL
    priority: Priority = Priority.MEDIUM
    status: ItemStatus = ItemStatus.OPEN
    assigned_to: str | None = None
    created_by: str | None = None
    due_date: str | None = None


class ItemUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    location: str | None = None
    trade: Trade | None = None
    priority: Priority | None = None
    status: ItemStatus | None = None
    assigned_to: str | None = None
    due_date: str | None = None


class ItemResponse(BaseModel):
    """Punchlist item data in responses."""

    id: str
    project_id: str
    title: str
    description: str
    location: str
    trade: str
    priority: str
    status: str
    assigned_to: str | None
    created_by: str | None
    due_date: str | None
    completed_at: str | None
    created_at: str
    updated_at: str


# === Photo schemas ===


class PhotoCreateRequest(BaseModel):
    """Request body for photo creation."""

    punchlist_item_id: str
    url: str = Field(min_length=1)
    caption: str = ""
    annotations: list[dict[str, Any]] = Field(default_factory=list)


class PhotoUpdateRequest(BaseModel):
    caption: str | None = None
    annotations: list[dict[str, Any]] | None = None


class PhotoResponse(BaseModel):
    """Photo data in responses."""

    id: str
    punchlist_item_id: str
    url: str
    caption: str
    annotations: list[dict[str, Any]]
    created_at: str
    updated_at: str


# === Note schemas ===


class NoteCreateRequest(BaseModel):
    content: str = Field(min_length=1)
    created_by: str | None = None


class NoteResponse(BaseModel):
    id: str
    punchlist_item_id: str
    content: str
    created_by: str | None
    created_at: str


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def _iso(value: datetime) -> str:
    # SQLite drops the timezone; stored values are UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _iso_or_none(value: datetime | None) -> str | None:
    return _iso(value) if value is not None else None


def user_to_response(user: User) -> UserResponse:
    """Convert User model to response schema."""
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        full_name=user.full_name,
        role=user.role,
        company=user.company,
        phone=user.phone,
        is_active=user.is_active,
        created_at=_iso(user.created_at),
        updated_at=_iso(user.updated_at),
    )


def project_to_response(project: Project) -> ProjectResponse:
    """Convert Project model to response schema."""
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        address=project.address,
        city=project.city,
        state=project.state,
        zip_code=project.zip_code,
        client_name=project.client_name,
        start_date=project.start_date,
        end_date=project.end_date,
        status=project.status,
        budget=project.budget,
        notes=project.notes,
        created_by=project.created_by,
        assigned_user_ids=[u.id for u in project.assigned_users],
        created_at=_iso(project.created_at),
        updated_at=_iso(project.updated_at),
    )


def item_to_response(item: PunchlistItem) -> ItemResponse:
    """Convert PunchlistItem model to response schema."""
    return ItemResponse(
        id=item.id,
        project_id=item.project_id,
        title=item.title,
        description=item.description,
        location=item.location,
        trade=item.trade,
        priority=item.priority,
        status=item.status,
        assigned_to=item.assigned_to,
        created_by=item.created_by,
        due_date=item.due_date,
        completed_at=_iso_or_none(item.completed_at),
        created_at=_iso(item.created_at),
        updated_at=_iso(item.updated_at),
    )


def photo_to_response(photo: Photo) -> PhotoResponse:
    """Convert Photo model to response schema."""
    return PhotoResponse(
        id=photo.id,
        punchlist_item_id=photo.punchlist_item_id,
        url=photo.url,
        caption=photo.caption,
        annotations=list(photo.annotations or []),
        created_at=_iso(photo.created_at),
        updated_at=_iso(photo.updated_at),
    )


def note_to_response(note: Note) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        punchlist_item_id=note.punchlist_item_id,
        content=note.content,
        created_by=note.created_by,
        created_at=_iso(note.created_at),
    )
