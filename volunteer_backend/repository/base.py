"""
The repository contract both storage backends implement.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

from volunteer_backend.repository.records import (
    ActivityRecord,
    AdminDashboardStats,
    AttendanceRecord,
    EventCounts,
    EventRecord,
    MembershipRecord,
    OrganizationRecord,
    ProjectRecord,
    ProjectStats,
    ResourceRecord,
    StatusCounts,
    VolunteerDashboardStats,
    VolunteerRecord,
    normalize_datetime,
)

# Columns a caller may change through the update_* operations.
VOLUNTEER_UPDATE_FIELDS = frozenset({"name", "email", "phone", "status"})
PROJECT_UPDATE_FIELDS = frozenset(
    {
        "org_id",
        "name",
        "description",
        "start_date",
        "end_date",
        "status",
        "location",
        "max_volunteers",
    }
)
EVENT_UPDATE_FIELDS = frozenset(
    {"name", "description", "event_date", "location", "max_participants"}
)
RESOURCE_UPDATE_FIELDS = frozenset({"name", "type", "quantity", "description"})

RECENT_EVENTS_LIMIT = 10


def clean_changes(changes: Mapping[str, Any], allowed: frozenset) -> dict[str, Any]:
    """Validate an update mapping against the columns an entity allows.

    Enum members are stored by value and datetimes as naive UTC.
    """
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValueError("No fields to update")
    cleaned: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = normalize_datetime(value)
        cleaned[key] = value
    return cleaned


def check_project_dates(
    start_date: Optional[datetime], end_date: Optional[datetime]
) -> None:
    """Reject a project whose end date falls before its start date."""
    if start_date is None or end_date is None:
        return
    if normalize_datetime(end_date) < normalize_datetime(start_date):
        raise ValueError("end_date must not be before start_date")


class Repository(Protocol):
    """Interface for data access; one implementation per storage backend."""

    # Health

    def ping(self) -> bool:
        ...

    # Organizations

    def list_organizations(self) -> list[OrganizationRecord]:
        ...

    def create_organization(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> OrganizationRecord:
        ...

    # Volunteers

    def list_volunteers(self, status: Optional[str] = None) -> list[VolunteerRecord]:
        ...

    def get_volunteer(self, volunteer_id: int) -> Optional[VolunteerRecord]:
        ...

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        ...

    def email_exists(
        self, email: str, exclude_volunteer_id: Optional[int] = None
    ) -> bool:
        ...

    def create_volunteer(
        self,
        name: str,
        email: str,
        password_hash: str,
        phone: Optional[str] = None,
        role: str = "volunteer",
    ) -> VolunteerRecord:
        ...

    def update_volunteer(
        self, volunteer_id: int, changes: Mapping[str, Any]
    ) -> VolunteerRecord:
        ...

    def set_password_hash(self, volunteer_id: int, password_hash: str) -> None:
        ...

    def delete_volunteer(self, volunteer_id: int) -> None:
        ...

    def count_volunteers_by_status(self) -> StatusCounts:
        ...

    # Projects

    def list_projects(
        self,
        status: Optional[str] = None,
        volunteer_id: Optional[int] = None,
    ) -> list[ProjectRecord]:
        ...

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        ...

    def create_project(
        self,
        name: str,
        start_date: datetime,
        *,
        max_volunteers: int,
        org_id: Optional[int] = None,
        description: Optional[str] = None,
        end_date: Optional[datetime] = None,
        status: str = "planned",
        location: Optional[str] = None,
    ) -> ProjectRecord:
        ...

    def update_project(
        self, project_id: int, changes: Mapping[str, Any]
    ) -> ProjectRecord:
        ...

    def delete_project(self, project_id: int) -> None:
        ...

    def list_projects_for_volunteer(self, volunteer_id: int) -> list[ProjectRecord]:
        ...

    def join_project(
        self, volunteer_id: int, project_id: int, role: str = "participant"
    ) -> MembershipRecord:
        ...

    def leave_project(self, volunteer_id: int, project_id: int) -> None:
        ...

    def list_project_members(self, project_id: int) -> list[MembershipRecord]:
        ...

    def count_projects_by_status(self) -> StatusCounts:
        ...

    # Events

    def list_events(
        self, project_id: Optional[int] = None, upcoming: bool = False
    ) -> list[EventRecord]:
        ...

    def list_events_for_volunteer(self, volunteer_id: int) -> list[EventRecord]:
        ...

    def get_event(self, event_id: int) -> Optional[EventRecord]:
        ...

    def create_event(
        self,
        project_id: int,
        name: str,
        event_date: datetime,
        *,
        max_participants: int,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> EventRecord:
        ...

    def update_event(self, event_id: int, changes: Mapping[str, Any]) -> EventRecord:
        ...

    def delete_event(self, event_id: int) -> None:
        ...

    def count_events(self) -> EventCounts:
        ...

    # Attendance

    def list_attendance_for_event(self, event_id: int) -> list[AttendanceRecord]:
        ...

    def list_attendance_for_volunteer(
        self, volunteer_id: int
    ) -> list[AttendanceRecord]:
        ...

    def mark_attendance(
        self,
        event_id: int,
        volunteer_id: int,
        status: str = "present",
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        ...

    def delete_attendance(self, event_id: int, volunteer_id: int) -> None:
        ...

    # Resources

    def list_resources(self, project_id: Optional[int] = None) -> list[ResourceRecord]:
        ...

    def get_resource(self, resource_id: int) -> Optional[ResourceRecord]:
        ...

    def create_resource(
        self,
        project_id: int,
        name: str,
        quantity: int,
        *,
        type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ResourceRecord:
        ...

    def update_resource(
        self, resource_id: int, changes: Mapping[str, Any]
    ) -> ResourceRecord:
        ...

    def delete_resource(self, resource_id: int) -> None:
        ...

    # Dashboards

    def admin_dashboard(self) -> AdminDashboardStats:
        ...

    def volunteer_dashboard(self, volunteer_id: int) -> VolunteerDashboardStats:
        ...

    def project_stats(self, project_id: int) -> ProjectStats:
        ...

    def recent_activity(self, limit: int = 10) -> list[ActivityRecord]:
        ...
