"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Header, Request

from punchlist.server.database import Database


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_idempotency_key(
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> str | None:
    """Client operation id sent with creates, if any."""
    return idempotency_key
