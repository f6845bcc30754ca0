"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from punchlist.server.api import health, items, photos, projects, users

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(projects.router)
router.include_router(items.router)
router.include_router(photos.router)
router.include_router(users.router)
