"""
Data access for the volunteer hub.

``Repository`` is the operation set the routes call; ``SqlRepository`` and
``MongoRepository`` implement it against the two supported stores.
"""

from volunteer_backend.repository.base import Repository, clean_changes
from volunteer_backend.repository.mongo import MongoRepository
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
)
from volunteer_backend.repository.sql import SqlRepository

__all__ = [
    "ActivityRecord",
    "AdminDashboardStats",
    "AttendanceRecord",
    "EventCounts",
    "EventRecord",
    "MembershipRecord",
    "MongoRepository",
    "OrganizationRecord",
    "ProjectRecord",
    "ProjectStats",
    "Repository",
    "ResourceRecord",
    "SqlRepository",
    "StatusCounts",
    "VolunteerDashboardStats",
    "VolunteerRecord",
    "clean_changes",
]
