"""
Events and event attendance.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from volunteer_backend.auth import CurrentUser, require_admin, require_user
from volunteer_backend.dependencies import repository_for_request
from volunteer_backend.errors import AuthorizationError, NotFoundError
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import AttendanceMark, EventCreate, EventUpdate, success

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.get("")
def list_events(
    project_id: Optional[int] = Query(default=None, alias="projectId", gt=0),
    volunteer_id: Optional[int] = Query(default=None, alias="volunteerId", gt=0),
    upcoming: bool = Query(default=False),
    repo: Repository = Depends(repository_for_request),
):
    if volunteer_id is not None:
        return success(repo.list_events_for_volunteer(volunteer_id))
    return success(repo.list_events(project_id=project_id, upcoming=upcoming))


@router.post("", status_code=201)
def create_event(
    payload: EventCreate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    event = repo.create_event(
        payload.project_id,
        payload.name,
        payload.event_date,
        max_participants=payload.max_participants,
        description=payload.description,
        location=payload.location,
    )
    return success(event, "Event created successfully")


@router.get("/{event_id}")
def get_event(event_id: int, repo: Repository = Depends(repository_for_request)):
    event = repo.get_event(event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return success(event)


@router.put("/{event_id}")
def update_event(
    event_id: int,
    payload: EventUpdate,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    return success(
        repo.update_event(event_id, payload.changes()), "Event updated successfully"
    )


@router.delete("/{event_id}")
def delete_event(
    event_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    repo.delete_event(event_id)
    return success(message="Event deleted successfully")


@router.get("/{event_id}/attendance")
def event_attendance(
    event_id: int,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    if repo.get_event(event_id) is None:
        raise NotFoundError("Event not found")
    return success(repo.list_attendance_for_event(event_id))


@router.post("/{event_id}/attendance")
def mark_attendance(
    event_id: int,
    payload: AttendanceMark,
    user: CurrentUser = Depends(require_user),
    repo: Repository = Depends(repository_for_request),
):
    volunteer_id = payload.volunteer_id or user.volunteer_id
    if volunteer_id != user.volunteer_id and not user.is_admin:
        raise AuthorizationError("Only admins can mark attendance for other volunteers")
    record = repo.mark_attendance(
        event_id, volunteer_id, status=payload.status.value, notes=payload.notes
    )
    logger.info(
        "Attendance for event %s volunteer %s set to %s",
        event_id,
        volunteer_id,
        record.status,
    )
    return success(record, "Attendance marked successfully")


@router.delete("/{event_id}/attendance/{volunteer_id}")
def delete_attendance(
    event_id: int,
    volunteer_id: int,
    admin: CurrentUser = Depends(require_admin),
    repo: Repository = Depends(repository_for_request),
):
    repo.delete_attendance(event_id, volunteer_id)
    return success(message="Attendance record deleted successfully")
