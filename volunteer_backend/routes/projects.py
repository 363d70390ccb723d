"""
Project CRUD, membership and per-project statistics.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from volunteer_backend.auth import (
    CurrentUser,
    optional_user,
    require_admin,
    require_user,
)
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.errors import NotFoundError
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import (
    JoinProjectRequest,
    ProjectCreate,
    ProjectUpdate,
    success,
)
from volunteer_backend.types import DEFAULT_MEMBERSHIP_ROLE, ProjectStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
def list_projects(
    status: Optional[ProjectStatus] = Query(default=None),
    user: Optional[CurrentUser] = Depends(optional_user),
    repo: Repository = Depends(repository_for_request),
):
    projects = repo.list_projects(
        status=status.value if status else None,
        volunteer_id=user.volunteer_id if user else None,
    )
    return success(projects)


@router.post("", status_code=201)
def create_project(
    payload: ProjectCreate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    project = repo.create_project(
        payload.name,
        payload.start_date,
        max_volunteers=payload.max_volunteers,
        org_id=payload.org_id,
        description=payload.description,
        end_date=payload.end_date,
        status=payload.status.value,
        location=payload.location,
    )
    logger.info("Created project %s", project.project_id)
    return success(project, "Project created successfully")


@router.get("/mine")
def my_projects(
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.list_projects_for_volunteer(user.volunteer_id))


@router.get("/{project_id}")
def get_project(project_id: int, repo: Repository = Depends(repository_for_request)):
    project = repo.get_project(project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return success(project)


@router.put("/{project_id}")
def update_project(
    project_id: int,
    payload: ProjectUpdate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    project = repo.update_project(project_id, payload.changes())
    return success(project, "Project updated successfully")


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    repo.delete_project(project_id)
    logger.info("Admin %s deleted project %s", admin.volunteer_id, project_id)
    return success(message="Project deleted successfully")


@router.get("/{project_id}/members")
def project_members(
    project_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    if repo.get_project(project_id) is None:
        raise NotFoundError("Project not found")
    return success(repo.list_project_members(project_id))


@router.get("/{project_id}/stats")
def project_stats(
    project_id: int,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.project_stats(project_id))


@router.post("/{project_id}/join")
def join_project(
    project_id: int,
    payload: Optional[JoinProjectRequest] = None,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    role = payload.role if payload else DEFAULT_MEMBERSHIP_ROLE
    membership = repo.join_project(user.volunteer_id, project_id, role)
    logger.info("Volunteer %s joined project %s", user.volunteer_id, project_id)
    return success(membership, "Successfully joined project")


@router.post("/{project_id}/leave")
def leave_project(
    project_id: int,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    repo.leave_project(user.volunteer_id, project_id)
    logger.info("Volunteer %s left project %s", user.volunteer_id, project_id)
    return success(message="Successfully left project")
