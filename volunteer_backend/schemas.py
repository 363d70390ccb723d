"""
Pydantic schemas for the volunteer hub API.

Request bodies accept camelCase keys (``maxVolunteers``) as well as the
snake_case field names. Responses use the ``{success, data, message}``
envelope built by :func:`success`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

from volunteer_backend.repository.records import normalize_datetime
from volunteer_backend.types import (
    DEFAULT_MEMBERSHIP_ROLE,
    AttendanceStatus,
    BackendType,
    ProjectStatus,
    VolunteerStatus,
)


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class UpdateModel(RequestModel):
    """Partial update; only the fields a client actually sent are applied."""

    nullable_fields: ClassVar[frozenset] = frozenset()

    @model_validator(mode="after")
    def _reject_null_required_fields(self):
        for name in self.model_fields_set:
            if getattr(self, name) is None and name not in self.nullable_fields:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# Auth


class RegisterRequest(RequestModel):
    name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(RequestModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)


class DatabaseSelection(RequestModel):
    db_type: BackendType


# Organizations


class OrganizationCreate(RequestModel):
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)


# Volunteers


class VolunteerUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset] = frozenset({"phone"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    status: Optional[VolunteerStatus] = None


# Projects


class ProjectCreate(RequestModel):
    org_id: Optional[int] = Field(default=None, gt=0)
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    start_date: datetime
    end_date: Optional[datetime] = None
    status: ProjectStatus = ProjectStatus.PLANNED
    location: Optional[str] = Field(default=None, max_length=500)
    max_volunteers: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_date is None:
            return self
        if normalize_datetime(self.end_date) < normalize_datetime(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset] = frozenset(
        {"org_id", "description", "end_date", "location"}
    )

    org_id: Optional[int] = Field(default=None, gt=0)
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ProjectStatus] = None
    location: Optional[str] = Field(default=None, max_length=500)
    max_volunteers: Optional[int] = Field(default=None, gt=0)


class JoinProjectRequest(RequestModel):
    role: str = Field(default=DEFAULT_MEMBERSHIP_ROLE, min_length=1, max_length=100)


# Events


class EventCreate(RequestModel):
    project_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    event_date: datetime
    location: Optional[str] = Field(default=None, max_length=500)
    max_participants: int = Field(..., gt=0)


class EventUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset] = frozenset({"description", "location"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    event_date: Optional[datetime] = None
    location: Optional[str] = Field(default=None, max_length=500)
    max_participants: Optional[int] = Field(default=None, gt=0)


class AttendanceMark(RequestModel):
    volunteer_id: Optional[int] = Field(default=None, gt=0)
    status: AttendanceStatus = AttendanceStatus.PRESENT
    notes: Optional[str] = Field(default=None, max_length=1000)


# Resources


class ResourceCreate(RequestModel):
    project_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=2, max_length=200)
    type: Optional[str] = Field(default=None, max_length=100)
    quantity: int = Field(..., gt=0)
    description: Optional[str] = Field(default=None, max_length=4000)


class ResourceUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset] = frozenset({"type", "description"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    type: Optional[str] = Field(default=None, max_length=100)
    quantity: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=4000)


# Response envelope


def to_payload(value: Any) -> Any:
    if hasattr(value, "as_dict"):
        return value.as_dict()
    if isinstance(value, list):
        return [to_payload(item) for item in value]
    return value


def success(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = to_payload(data)
    if message:
        body["message"] = message
    return body
