"""
Volunteer listing, profile and account management.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from volunteer_backend.auth import (
    CurrentUser,
    require_admin,
    require_self_or_admin,
    require_user,
)
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.errors import AuthorizationError, NotFoundError
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import VolunteerUpdate, success
from volunteer_backend.types import VolunteerStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/volunteers", tags=["volunteers"])


@router.get("")
def list_volunteers(
    status: Optional[VolunteerStatus] = Query(default=None),
    action: Optional[Literal["count"]] = Query(default=None),
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    if action == "count":
        return success(repo.count_volunteers_by_status())
    return success(repo.list_volunteers(status.value if status else None))


@router.get("/{volunteer_id}")
def get_volunteer(
    volunteer_id: int,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    require_self_or_admin(user, volunteer_id)
    volunteer = repo.get_volunteer(volunteer_id)
    if volunteer is None:
        raise NotFoundError("Volunteer not found")
    return success(volunteer)


@router.put("/{volunteer_id}")
def update_volunteer(
    volunteer_id: int,
    payload: VolunteerUpdate,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    require_self_or_admin(user, volunteer_id)
    changes = payload.changes()
    if "status" in changes and not user.is_admin:
        raise AuthorizationError("Only admins can change volunteer status")
    volunteer = repo.update_volunteer(volunteer_id, changes)
    return success(volunteer, "Volunteer updated successfully")


@router.delete("/{volunteer_id}")
def delete_volunteer(
    volunteer_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    repo.delete_volunteer(volunteer_id)
    logger.info("Admin %s deleted volunteer %s", admin.volunteer_id, volunteer_id)
    return success(message="Volunteer deleted successfully")
