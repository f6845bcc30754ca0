"""SQLAlchemy models for the punchlist server.

This module defines the database schema using SQLAlchemy ORM.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from punchlist.core.types import ItemStatus, Priority, ProjectStatus, Trade, UserRole


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


# Users assigned to a project
project_users = Table(
    "project_users",
    Base.metadata,
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """A person working on projects (inspector, contractor, ...)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(32), default=UserRole.CONTRACTOR.value, nullable=False)
    company: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )

    # Relationships
    assigned_projects: Mapped[list[Project]] = relationship(
        "Project", secondary=project_users, back_populates="assigned_users"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Project(Base):
    """A construction project holding punchlist items."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    city: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    state: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    start_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    end_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), default=ProjectStatus.PLANNING.value, nullable=False
    )
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )

    # Relationships
    assigned_users: Mapped[list[User]] = relationship(
        "User", secondary=project_users, back_populates="assigned_projects"
    )
    punchlist_items: Mapped[list[PunchlistItem]] = relationship(
        "PunchlistItem", back_populates="project", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_projects_name_client", "name", "client_name"),)


class PunchlistItem(Base):
    """A tracked defect or task on a project."""

    __tablename__ = "punchlist_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    trade: Mapped[str] = mapped_column(String(32), default=Trade.GENERAL.value, nullable=False)
    priority: Mapped[str] = mapped_column(String(32), default=Priority.MEDIUM.value, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default=ItemStatus.OPEN.value, nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    due_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )

    # Relationships
    project: Mapped[Project] = relationship("Project", back_populates="punchlist_items")
    photos: Mapped[list[Photo]] = relationship(
        "Photo", back_populates="punchlist_item", cascade="all, delete-orphan"
    )
    notes: Mapped[list[Note]] = relationship(
        "Note", back_populates="punchlist_item", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_items_project_status", "project_id", "status"),
        Index("idx_items_assigned_status", "assigned_to", "status"),
    )


class Photo(Base):
    """A photo documenting a punchlist item."""

    __tablename__ = "photos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    punchlist_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("punchlist_items.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    caption: Mapped[str] = mapped_column(Text, default="", nullable=False)
    annotations: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )

    # Relationships
    punchlist_item: Mapped[PunchlistItem] = relationship("PunchlistItem", back_populates="photos")

    __table_args__ = (Index("idx_photos_item", "punchlist_item_id"),)


class Note(Base):
    """A comment on a punchlist item (not synchronized offline)."""

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    punchlist_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("punchlist_items.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )

    # Relationships
    punchlist_item: Mapped[PunchlistItem] = relationship("PunchlistItem", back_populates="notes")


class AppliedOperation(Base):
    """Idempotency key of a create already applied."""

    __tablename__ = "applied_operations"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
