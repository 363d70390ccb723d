"""
Project resources (equipment and supplies).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from volunteer_backend.auth import CurrentUser, require_admin
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.errors import NotFoundError
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import ResourceCreate, ResourceUpdate, success

router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("")
def list_resources(
    project_id: Optional[int] = Query(default=None, alias="projectId", gt=0),
    repo: Repository = Depends(repository_for_request),
):
    return success(repo.list_resources(project_id))


@router.post("", status_code=201)
def create_resource(
    payload: ResourceCreate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    resource = repo.create_resource(
        payload.project_id,
        payload.name,
        payload.quantity,
        type=payload.type,
        description=payload.description,
    )
    return success(resource, "Resource created successfully")


@router.get("/{resource_id}")
def get_resource(resource_id: int, repo: Repository = Depends(repository_for_request)):
    resource = repo.get_resource(resource_id)
    if resource is None:
        raise NotFoundError("Resource not found")
    return success(resource)


@router.put("/{resource_id}")
def update_resource(
    resource_id: int,
    payload: ResourceUpdate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    resource = repo.update_resource(resource_id, payload.changes())
    return success(resource, "Resource updated successfully")


@router.delete("/{resource_id}")
def delete_resource(
    resource_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    repo.delete_resource(resource_id)
    return success(message="Resource deleted successfully")
