"""
Enumerations shared by the API, the schemas and both repositories.
"""

from __future__ import annotations

from enum import Enum


class BackendType(str, Enum):
    SQL = "sql"
    MONGODB = "mongodb"

    @property
    def display_name(self) -> str:
        if self is BackendType.SQL:
            return "SQL Database"
        return "MongoDB"


class VolunteerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Role(str, Enum):
    ADMIN = "admin"
    VOLUNTEER = "volunteer"


class ProjectStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    EXCUSED = "excused"


DEFAULT_MEMBERSHIP_ROLE = "participant"
