"""
Organizations that run projects.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from volunteer_backend.auth import CurrentUser, require_admin
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import OrganizationCreate, success

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.get("")
def list_organizations(repo: Repository = Depends(repository_for_request)):
    return success(repo.list_organizations())


@router.post("", status_code=201)
def create_organization(
    payload: OrganizationCreate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    organization = repo.create_organization(
        payload.name,
        description=payload.description,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
    )
    return success(organization, "Organization created successfully")
