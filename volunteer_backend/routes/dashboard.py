"""
Admin and volunteer dashboards plus the activity feed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from volunteer_backend.auth import CurrentUser, require_admin, require_user
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import success

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/admin")
def admin_dashboard(
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.admin_dashboard())


@router.get("/volunteer")
def volunteer_dashboard(
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.volunteer_dashboard(user.volunteer_id))


@router.get("/activity")
def recent_activity(
    limit: int = Query(default=10, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.recent_activity(limit))
