"""Project API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from punchlist.core.types import EntityType
from punchlist.server.api.deps import get_db, get_idempotency_key
from punchlist.server.database import Database, InvalidReferenceError
from punchlist.server.schemas import (
    ItemResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
    item_to_response,
    project_to_response,
)

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _not_found(project_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Project {project_id} not found",
    )


@router.get("", response_model=list[ProjectResponse])
def list_projects(db: Database = Depends(get_db)) -> list[ProjectResponse]:
    """List all projects."""
    return [project_to_response(p) for p in db.list_projects()]


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    request: ProjectCreateRequest,
    response: Response,
    db: Database = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> ProjectResponse:
    """Create a project."""
    try:
        project, created = db.create(
            EntityType.PROJECT, request.model_dump(mode="json"), idempotency_key
        )
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if not created:
        response.status_code = status.HTTP_200_OK
    return project_to_response(project)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(project_id: str, db: Database = Depends(get_db)) -> ProjectResponse:
    """Get a project by id."""
    project = db.get(EntityType.PROJECT, project_id)
    if project is None:
        raise _not_found(project_id)
    return project_to_response(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: str,
    request: ProjectUpdateRequest,
    db: Database = Depends(get_db),
) -> ProjectResponse:
    """Apply a partial update to a project."""
    try:
        project = db.update(
            EntityType.PROJECT, project_id, request.model_dump(mode="json", exclude_unset=True)
        )
    except InvalidReferenceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if project is None:
        raise _not_found(project_id)
    return project_to_response(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: str, db: Database = Depends(get_db)) -> Response:
    """Delete a project with its items, photos and notes."""
    if not db.delete(EntityType.PROJECT, project_id):
        raise _not_found(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/items", response_model=list[ItemResponse])
def list_project_items(project_id: str, db: Database = Depends(get_db)) -> list[ItemResponse]:
    """List the punchlist items of a project."""
    if db.get(EntityType.PROJECT, project_id) is None:
        raise _not_found(project_id)
    return [item_to_response(i) for i in db.list_items(project_id)]
