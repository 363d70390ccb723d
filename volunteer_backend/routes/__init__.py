"""
HTTP routes for the volunteer hub API.
"""

from fastapi import APIRouter

from volunteer_backend.routes import (
    auth,
    dashboard,
    database,
    events,
    organizations,
    projects,
    resources,
    volunteers,
)

router = APIRouter()
router.include_router(auth.router)
router.include_router(database.router)
router.include_router(organizations.router)
router.include_router(volunteers.router)
router.include_router(projects.router)
router.include_router(events.router)
router.include_router(resources.router)
router.include_router(dashboard.router)

__all__ = ["router"]
