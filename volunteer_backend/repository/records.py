"""
Record types returned by both repository implementations.

The SQL and MongoDB repositories build these same dataclasses, so the
payloads they produce share field names and types by construction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now, truncated to the millisecond precision BSON can store."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an incoming datetime to naive UTC at millisecond precision."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class _Record:
    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrganizationRecord(_Record):
    org_id: int
    name: str
    description: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class VolunteerRecord(_Record):
    volunteer_id: int
    name: str
    email: str
    phone: Optional[str]
    join_date: datetime
    status: str
    role: str
    created_at: datetime
    password_hash: Optional[str] = field(default=None, repr=False)

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("password_hash", None)
        return data


@dataclass
class ProjectRecord(_Record):
    project_id: int
    org_id: Optional[int]
    name: str
    description: Optional[str]
    start_date: datetime
    end_date: Optional[datetime]
    status: str
    location: Optional[str]
    max_volunteers: int
    created_at: datetime
    org_name: Optional[str] = None
    volunteer_count: int = 0
    is_joined: Optional[bool] = None
    join_date: Optional[datetime] = None
    volunteer_role: Optional[str] = None


@dataclass
class EventRecord(_Record):
    event_id: int
    project_id: int
    name: str
    description: Optional[str]
    event_date: datetime
    location: Optional[str]
    max_participants: int
    created_at: datetime
    project_name: Optional[str] = None
    attendance_count: int = 0
    attendance_status: Optional[str] = None


@dataclass
class MembershipRecord(_Record):
    volunteer_id: int
    project_id: int
    join_date: datetime
    role: str
    volunteer_name: Optional[str] = None
    project_name: Optional[str] = None


@dataclass
class AttendanceRecord(_Record):
    event_id: int
    volunteer_id: int
    status: str
    notes: Optional[str]
    marked_at: datetime
    volunteer_name: Optional[str] = None
    event_name: Optional[str] = None
    event_date: Optional[datetime] = None
    project_name: Optional[str] = None


@dataclass
class ResourceRecord(_Record):
    resource_id: int
    project_id: int
    name: str
    type: Optional[str]
    quantity: int
    description: Optional[str]
    created_at: datetime
    project_name: Optional[str] = None


@dataclass
class StatusCounts(_Record):
    """Total plus a per-status breakdown, e.g. {"active": 3, ...}."""

    total: int
    by_status: dict[str, int]


@dataclass
class EventCounts(_Record):
    total: int
    upcoming: int


@dataclass
class ProjectVolunteerCount(_Record):
    project_id: int
    project_name: str
    volunteer_count: int


@dataclass
class AdminDashboardStats(_Record):
    total_volunteers: int
    active_volunteers: int
    total_projects: int
    active_projects: int
    total_events: int
    upcoming_events: int
    project_status_breakdown: dict[str, int]
    volunteers_per_project: list[ProjectVolunteerCount]
    total_attendances: int
    average_attendance_per_event: float


@dataclass
class VolunteerProjectSummary(_Record):
    project_id: int
    project_name: str
    join_date: datetime
    role: str


@dataclass
class VolunteerEventSummary(_Record):
    event_id: int
    event_name: str
    event_date: datetime
    status: str


@dataclass
class VolunteerDashboardStats(_Record):
    volunteer_id: int
    projects_joined: int
    events_attended: int
    upcoming_events: int
    projects: list[VolunteerProjectSummary]
    recent_events: list[VolunteerEventSummary]


@dataclass
class ProjectStats(_Record):
    project_id: int
    volunteer_count: int
    event_count: int
    resource_count: int
    total_attendance: int


@dataclass
class ActivityRecord(_Record):
    activity_type: str
    description: str
    activity_date: datetime
