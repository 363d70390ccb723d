"""
Registration, login and session endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from volunteer_backend.auth import (
    CurrentUser,
    clear_auth_cookie,
    create_access_token,
    hash_password,
    require_user,
    set_auth_cookie,
    verify_password,
)
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.errors import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
)
from volunteer_backend.repository import Repository, VolunteerRecord
from volunteer_backend.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    success,
)
from volunteer_backend.types import VolunteerStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_payload(volunteer: VolunteerRecord) -> dict:
    return {
        "volunteer_id": volunteer.volunteer_id,
        "name": volunteer.name,
        "email": volunteer.email,
        "role": volunteer.role,
    }


def _start_session(response: Response, volunteer: VolunteerRecord) -> None:
    token = create_access_token(volunteer.volunteer_id, volunteer.email, volunteer.role)
    set_auth_cookie(response, token)


@router.post("/register", status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    repo: Repository = Depends(repository_for_request),
):
    volunteer = repo.create_volunteer(
        payload.name,
        payload.email,
        hash_password(payload.password),
        phone=payload.phone,
    )
    _start_session(response, volunteer)
    logger.info("Registered volunteer %s", volunteer.volunteer_id)
    return success(_session_payload(volunteer), "Registration successful")


@router.post("/login")
def login(
    payload: LoginRequest,
    response: Response,
    repo: Repository = Depends(repository_for_request),
):
    volunteer = repo.get_volunteer_by_email(payload.email)
    if volunteer is None or not verify_password(payload.password, volunteer.password_hash):
        raise AuthenticationError("Invalid email or password")
    if volunteer.status != VolunteerStatus.ACTIVE.value:
        raise AuthorizationError("Account is not active")
    _start_session(response, volunteer)
    return success(_session_payload(volunteer), "Login successful")


@router.post("/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return success(message="Logout successful")


@router.get("/me")
def me(
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    volunteer = repo.get_volunteer(user.volunteer_id)
    if volunteer is None:
        raise NotFoundError("Volunteer not found")
    return success(volunteer)


@router.put("/password")
def change_password(
    payload: ChangePasswordRequest,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    volunteer = repo.get_volunteer(user.volunteer_id)
    if volunteer is None:
        raise NotFoundError("Volunteer not found")
    account = repo.get_volunteer_by_email(volunteer.email)
    if account is None or not verify_password(
        payload.current_password, account.password_hash
    ):
        raise ApiError("Current password is incorrect")
    repo.set_password_hash(user.volunteer_id, hash_password(payload.new_password))
    return success(message="Password updated successfully")
