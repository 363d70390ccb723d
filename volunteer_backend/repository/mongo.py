"""
MongoDB-backed repository (pymongo).

Each entity lives in its own collection and carries an integer id issued
from the ``counters`` collection, so ids look the same as on the SQL side.
Membership capacity is enforced with a compare-and-swap on the project's
``seats_taken`` field and uniqueness with unique indexes. Cascading deletes
are performed by hand since MongoDB has no foreign keys.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from volunteer_backend.errors import ConflictError, NotFoundError
from volunteer_backend.repository.base import (
    EVENT_UPDATE_FIELDS,
    PROJECT_UPDATE_FIELDS,
    RECENT_EVENTS_LIMIT,
    RESOURCE_UPDATE_FIELDS,
    VOLUNTEER_UPDATE_FIELDS,
    check_project_dates,
    clean_changes,
)
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
    ProjectVolunteerCount,
    ResourceRecord,
    StatusCounts,
    VolunteerDashboardStats,
    VolunteerEventSummary,
    VolunteerProjectSummary,
    VolunteerRecord,
    normalize_datetime,
    utcnow,
)
from volunteer_backend.types import (
    AttendanceStatus,
    ProjectStatus,
    Role,
    VolunteerStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "volunteer_db"

ORGANIZATIONS = "organizations"
VOLUNTEERS = "volunteers"
PROJECTS = "projects"
EVENTS = "events"
MEMBERSHIPS = "volunteer_project"
ATTENDANCE = "event_attendance"
RESOURCES = "resources"
COUNTERS = "counters"

# Retries for the seat compare-and-swap when max_volunteers moves under us.
_SEAT_CLAIM_ATTEMPTS = 3


def _first_name(doc: dict, key: str) -> Optional[str]:
    matches = doc.get(key) or []
    return matches[0].get("name") if matches else None


def _lookup(source: str, local_field: str, foreign_field: str, as_: str) -> dict:
    return {
        "$lookup": {
            "from": source,
            "localField": local_field,
            "foreignField": foreign_field,
            "as": as_,
        }
    }


class MongoRepository:
    """
    Document-store implementation of the repository contract.
    """

    def __init__(self, database: Database, *, ensure_indexes: bool = True):
        self.db = database
        if ensure_indexes:
            self.ensure_indexes()

    @classmethod
    def from_uri(
        cls,
        uri: str,
        db_name: Optional[str] = None,
        *,
        server_selection_timeout_ms: int = 5000,
    ) -> "MongoRepository":
        client = MongoClient(uri, serverSelectionTimeoutMS=server_selection_timeout_ms)
        if db_name:
            database = client[db_name]
        else:
            database = client.get_default_database(default=DEFAULT_DB_NAME)
        return cls(database)

    def ensure_indexes(self) -> None:
        self.db[ORGANIZATIONS].create_index("org_id", unique=True)
        self.db[VOLUNTEERS].create_index("volunteer_id", unique=True)
        self.db[VOLUNTEERS].create_index("email", unique=True)
        self.db[PROJECTS].create_index("project_id", unique=True)
        self.db[EVENTS].create_index("event_id", unique=True)
        self.db[EVENTS].create_index("project_id")
        self.db[MEMBERSHIPS].create_index(
            [("volunteer_id", ASCENDING), ("project_id", ASCENDING)], unique=True
        )
        self.db[ATTENDANCE].create_index(
            [("event_id", ASCENDING), ("volunteer_id", ASCENDING)], unique=True
        )
        self.db[RESOURCES].create_index("resource_id", unique=True)
        self.db[RESOURCES].create_index("project_id")

    def _next_id(self, collection: str, id_field: str) -> int:
        """Issue the next integer id for ``collection``.

        The counter is seeded from the highest id already stored, which
        keeps ids monotonic for databases populated before counters existed.
        """
        counters = self.db[COUNTERS]
        if counters.find_one({"_id": collection}) is None:
            top = self.db[collection].find_one(
                {}, projection={id_field: 1}, sort=[(id_field, DESCENDING)]
            )
            seed = int(top[id_field]) if top else 0
            try:
                counters.insert_one({"_id": collection, "seq": seed})
            except DuplicateKeyError:
                pass
        counter = counters.find_one_and_update(
            {"_id": collection},
            {"$inc": {"seq": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    def _names(self, collection: str, id_field: str, ids: Iterable[int]) -> dict:
        ids = list(set(ids))
        if not ids:
            return {}
        return {
            doc[id_field]: doc.get("name")
            for doc in self.db[collection].find(
                {id_field: {"$in": ids}}, {id_field: 1, "name": 1}
            )
        }

    def _require_organization(self, org_id: Optional[int]) -> None:
        if org_id is None:
            return
        if self.db[ORGANIZATIONS].count_documents({"org_id": org_id}) == 0:
            raise NotFoundError("Organization not found")

    def _joined_project_ids(self, volunteer_id: int) -> list[int]:
        return list(
            self.db[MEMBERSHIPS].distinct("project_id", {"volunteer_id": volunteer_id})
        )

    # Document mappers

    def _to_organization(self, doc: dict) -> OrganizationRecord:
        return OrganizationRecord(
            org_id=doc["org_id"],
            name=doc["name"],
            description=doc.get("description"),
            email=doc.get("email"),
            phone=doc.get("phone"),
            address=doc.get("address"),
            created_at=doc.get("created_at"),
        )

    def _to_volunteer(self, doc: dict, *, with_hash: bool = False) -> VolunteerRecord:
        return VolunteerRecord(
            volunteer_id=doc["volunteer_id"],
            name=doc["name"],
            email=doc["email"],
            phone=doc.get("phone"),
            join_date=doc["join_date"],
            status=doc["status"],
            role=doc["role"],
            created_at=doc["created_at"],
            password_hash=doc.get("password_hash") if with_hash else None,
        )

    def _to_project(self, doc: dict, **extra: Any) -> ProjectRecord:
        return ProjectRecord(
            project_id=doc["project_id"],
            org_id=doc.get("org_id"),
            name=doc["name"],
            description=doc.get("description"),
            start_date=doc["start_date"],
            end_date=doc.get("end_date"),
            status=doc["status"],
            location=doc.get("location"),
            max_volunteers=doc["max_volunteers"],
            created_at=doc["created_at"],
            org_name=_first_name(doc, "org"),
            volunteer_count=int(doc.get("volunteer_count", 0)),
            **extra,
        )

    def _to_event(self, doc: dict, attendance_status: Optional[str] = None) -> EventRecord:
        return EventRecord(
            event_id=doc["event_id"],
            project_id=doc["project_id"],
            name=doc["name"],
            description=doc.get("description"),
            event_date=doc["event_date"],
            location=doc.get("location"),
            max_participants=doc["max_participants"],
            created_at=doc["created_at"],
            project_name=_first_name(doc, "project"),
            attendance_count=int(doc.get("attendance_count", 0)),
            attendance_status=attendance_status,
        )

    def _to_resource(self, doc: dict) -> ResourceRecord:
        return ResourceRecord(
            resource_id=doc["resource_id"],
            project_id=doc["project_id"],
            name=doc["name"],
            type=doc.get("type"),
            quantity=doc["quantity"],
            description=doc.get("description"),
            created_at=doc["created_at"],
            project_name=_first_name(doc, "project"),
        )

    # Aggregation pipelines

    def _project_docs(self, match: dict) -> list[dict]:
        pipeline = [
            {"$match": match},
            _lookup(ORGANIZATIONS, "org_id", "org_id", "org"),
            _lookup(MEMBERSHIPS, "project_id", "project_id", "members"),
            {"$addFields": {"volunteer_count": {"$size": "$members"}}},
            {"$project": {"members": 0}},
            {"$sort": {"created_at": -1, "project_id": -1}},
        ]
        return list(self.db[PROJECTS].aggregate(pipeline))

    def _event_docs(self, match: dict, sort: dict) -> list[dict]:
        pipeline = [
            {"$match": match},
            _lookup(PROJECTS, "project_id", "project_id", "project"),
            _lookup(ATTENDANCE, "event_id", "event_id", "attendance"),
            {"$addFields": {"attendance_count": {"$size": "$attendance"}}},
            {"$project": {"attendance": 0}},
            {"$sort": sort},
        ]
        return list(self.db[EVENTS].aggregate(pipeline))

    def _attendance_records(self, match: dict) -> list[AttendanceRecord]:
        pipeline = [
            {"$match": match},
            _lookup(VOLUNTEERS, "volunteer_id", "volunteer_id", "volunteer"),
            _lookup(EVENTS, "event_id", "event_id", "event"),
        ]
        docs = [
            doc
            for doc in self.db[ATTENDANCE].aggregate(pipeline)
            if doc.get("volunteer") and doc.get("event")
        ]
        project_names = self._names(
            PROJECTS, "project_id", (doc["event"][0]["project_id"] for doc in docs)
        )
        records = []
        for doc in docs:
            event = doc["event"][0]
            records.append(
                AttendanceRecord(
                    event_id=doc["event_id"],
                    volunteer_id=doc["volunteer_id"],
                    status=doc["status"],
                    notes=doc.get("notes"),
                    marked_at=doc["marked_at"],
                    volunteer_name=doc["volunteer"][0]["name"],
                    event_name=event["name"],
                    event_date=event["event_date"],
                    project_name=project_names.get(event["project_id"]),
                )
            )
        return records

    def _resource_docs(self, match: dict, sort: dict) -> list[dict]:
        pipeline = [
            {"$match": match},
            _lookup(PROJECTS, "project_id", "project_id", "project"),
            {"$sort": sort},
        ]
        return list(self.db[RESOURCES].aggregate(pipeline))

    def _status_counts(self, collection: str, statuses) -> StatusCounts:
        found = {
            doc["_id"]: int(doc["count"])
            for doc in self.db[collection].aggregate(
                [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
            )
        }
        by_status = {s.value: found.get(s.value, 0) for s in statuses}
        return StatusCounts(total=sum(found.values()), by_status=by_status)

    # Health

    def ping(self) -> bool:
        self.db.command("ping")
        return True

    # Organizations

    def list_organizations(self) -> list[OrganizationRecord]:
        cursor = self.db[ORGANIZATIONS].find({}, {"_id": 0}).sort(
            [("name", ASCENDING), ("org_id", ASCENDING)]
        )
        return [self._to_organization(doc) for doc in cursor]

    def create_organization(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> OrganizationRecord:
        doc = {
            "org_id": self._next_id(ORGANIZATIONS, "org_id"),
            "name": name,
            "description": description,
            "email": email,
            "phone": phone,
            "address": address,
            "created_at": utcnow(),
        }
        self.db[ORGANIZATIONS].insert_one(doc)
        return self._to_organization(doc)

    # Volunteers

    def list_volunteers(self, status: Optional[str] = None) -> list[VolunteerRecord]:
        if status:
            cursor = self.db[VOLUNTEERS].find({"status": status}).sort(
                [("name", ASCENDING), ("volunteer_id", ASCENDING)]
            )
        else:
            cursor = self.db[VOLUNTEERS].find({}).sort(
                [("created_at", DESCENDING), ("volunteer_id", DESCENDING)]
            )
        return [self._to_volunteer(doc) for doc in cursor]

    def get_volunteer(self, volunteer_id: int) -> Optional[VolunteerRecord]:
        doc = self.db[VOLUNTEERS].find_one({"volunteer_id": volunteer_id})
        return self._to_volunteer(doc) if doc else None

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        doc = self.db[VOLUNTEERS].find_one({"email": email.strip().lower()})
        return self._to_volunteer(doc, with_hash=True) if doc else None

    def email_exists(
        self, email: str, exclude_volunteer_id: Optional[int] = None
    ) -> bool:
        query: dict[str, Any] = {"email": email.strip().lower()}
        if exclude_volunteer_id is not None:
            query["volunteer_id"] = {"$ne": exclude_volunteer_id}
        return self.db[VOLUNTEERS].count_documents(query) > 0

    def create_volunteer(
        self,
        name: str,
        email: str,
        password_hash: str,
        phone: Optional[str] = None,
        role: str = Role.VOLUNTEER.value,
    ) -> VolunteerRecord:
        if self.email_exists(email):
            raise ConflictError("Email already registered")
        now = utcnow()
        doc = {
            "volunteer_id": self._next_id(VOLUNTEERS, "volunteer_id"),
            "name": name,
            "email": email.strip().lower(),
            "password_hash": password_hash,
            "phone": phone or None,
            "join_date": now,
            "status": VolunteerStatus.ACTIVE.value,
            "role": role,
            "created_at": now,
        }
        try:
            self.db[VOLUNTEERS].insert_one(doc)
        except DuplicateKeyError as exc:
            raise ConflictError("Email already registered") from exc
        return self._to_volunteer(doc)

    def update_volunteer(
        self, volunteer_id: int, changes: Mapping[str, Any]
    ) -> VolunteerRecord:
        changes = clean_changes(changes, VOLUNTEER_UPDATE_FIELDS)
        if changes.get("email"):
            changes["email"] = changes["email"].strip().lower()
            if self.email_exists(changes["email"], exclude_volunteer_id=volunteer_id):
                raise ConflictError("Email already registered")
        try:
            result = self.db[VOLUNTEERS].update_one(
                {"volunteer_id": volunteer_id}, {"$set": changes}
            )
        except DuplicateKeyError as exc:
            raise ConflictError("Email already registered") from exc
        if result.matched_count == 0:
            raise NotFoundError("Volunteer not found")
        return self.get_volunteer(volunteer_id)

    def set_password_hash(self, volunteer_id: int, password_hash: str) -> None:
        result = self.db[VOLUNTEERS].update_one(
            {"volunteer_id": volunteer_id}, {"$set": {"password_hash": password_hash}}
        )
        if result.matched_count == 0:
            raise NotFoundError("Volunteer not found")

    def delete_volunteer(self, volunteer_id: int) -> None:
        result = self.db[VOLUNTEERS].delete_one({"volunteer_id": volunteer_id})
        if result.deleted_count == 0:
            raise NotFoundError("Volunteer not found")
        # Exactly one seat per membership removed here.
        while True:
            membership = self.db[MEMBERSHIPS].find_one_and_delete(
                {"volunteer_id": volunteer_id}
            )
            if membership is None:
                break
            self._release_seat(membership["project_id"])
        self.db[ATTENDANCE].delete_many({"volunteer_id": volunteer_id})

    def count_volunteers_by_status(self) -> StatusCounts:
        return self._status_counts(VOLUNTEERS, VolunteerStatus)

    # Projects

    def list_projects(
        self,
        status: Optional[str] = None,
        volunteer_id: Optional[int] = None,
    ) -> list[ProjectRecord]:
        docs = self._project_docs({"status": status} if status else {})
        if volunteer_id is None:
            return [self._to_project(doc) for doc in docs]
        joined = set(self._joined_project_ids(volunteer_id))
        return [
            self._to_project(doc, is_joined=doc["project_id"] in joined) for doc in docs
        ]

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        docs = self._project_docs({"project_id": project_id})
        return self._to_project(docs[0]) if docs else None

    def create_project(
        self,
        name: str,
        start_date: datetime,
        *,
        max_volunteers: int,
        org_id: Optional[int] = None,
        description: Optional[str] = None,
        end_date: Optional[datetime] = None,
        status: str = ProjectStatus.PLANNED.value,
        location: Optional[str] = None,
    ) -> ProjectRecord:
        check_project_dates(start_date, end_date)
        self._require_organization(org_id)
        project_id = self._next_id(PROJECTS, "project_id")
        self.db[PROJECTS].insert_one(
            {
                "project_id": project_id,
                "org_id": org_id,
                "name": name,
                "description": description,
                "start_date": normalize_datetime(start_date),
                "end_date": normalize_datetime(end_date),
                "status": status,
                "location": location,
                "max_volunteers": max_volunteers,
                "created_at": utcnow(),
                "seats_taken": 0,
            }
        )
        return self.get_project(project_id)

    def update_project(
        self, project_id: int, changes: Mapping[str, Any]
    ) -> ProjectRecord:
        changes = clean_changes(changes, PROJECT_UPDATE_FIELDS)
        current = self.db[PROJECTS].find_one(
            {"project_id": project_id}, {"start_date": 1, "end_date": 1}
        )
        if current is None:
            raise NotFoundError("Project not found")
        self._require_organization(changes.get("org_id"))
        check_project_dates(
            changes.get("start_date", current.get("start_date")),
            changes.get("end_date", current.get("end_date")),
        )
        result = self.db[PROJECTS].update_one(
            {"project_id": project_id}, {"$set": changes}
        )
        if result.matched_count == 0:
            raise NotFoundError("Project not found")
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> None:
        result = self.db[PROJECTS].delete_one({"project_id": project_id})
        if result.deleted_count == 0:
            raise NotFoundError("Project not found")
        event_ids = self.db[EVENTS].distinct("event_id", {"project_id": project_id})
        if event_ids:
            self.db[ATTENDANCE].delete_many({"event_id": {"$in": event_ids}})
        self.db[EVENTS].delete_many({"project_id": project_id})
        self.db[MEMBERSHIPS].delete_many({"project_id": project_id})
        self.db[RESOURCES].delete_many({"project_id": project_id})

    def list_projects_for_volunteer(self, volunteer_id: int) -> list[ProjectRecord]:
        memberships = {
            doc["project_id"]: doc
            for doc in self.db[MEMBERSHIPS].find({"volunteer_id": volunteer_id})
        }
        if not memberships:
            return []
        docs = self._project_docs({"project_id": {"$in": list(memberships)}})
        records = [
            self._to_project(
                doc,
                join_date=memberships[doc["project_id"]]["join_date"],
                volunteer_role=memberships[doc["project_id"]]["role"],
            )
            for doc in docs
        ]
        records.sort(key=lambda p: (p.join_date, p.project_id), reverse=True)
        return records

    def _ensure_seat_counter(self, project: dict) -> None:
        if "seats_taken" in project:
            return
        taken = self.db[MEMBERSHIPS].count_documents(
            {"project_id": project["project_id"]}
        )
        self.db[PROJECTS].update_one(
            {"project_id": project["project_id"], "seats_taken": {"$exists": False}},
            {"$set": {"seats_taken": taken}},
        )

    def _claim_seat(self, project_id: int) -> None:
        for _ in range(_SEAT_CLAIM_ATTEMPTS):
            project = self.db[PROJECTS].find_one({"project_id": project_id})
            if project is None:
                raise NotFoundError("Project not found")
            self._ensure_seat_counter(project)
            capacity = project["max_volunteers"]
            claimed = self.db[PROJECTS].find_one_and_update(
                {
                    "project_id": project_id,
                    "max_volunteers": capacity,
                    "seats_taken": {"$lt": capacity},
                },
                {"$inc": {"seats_taken": 1}},
            )
            if claimed is not None:
                return
            current = self.db[PROJECTS].find_one(
                {"project_id": project_id}, {"max_volunteers": 1}
            )
            if current is None:
                raise NotFoundError("Project not found")
            if current["max_volunteers"] == capacity:
                break
        raise ConflictError("Project has reached maximum volunteer capacity")

    def _release_seat(self, project_id: int) -> None:
        self.db[PROJECTS].update_one(
            {"project_id": project_id, "seats_taken": {"$gt": 0}},
            {"$inc": {"seats_taken": -1}},
        )

    def join_project(
        self, volunteer_id: int, project_id: int, role: str = "participant"
    ) -> MembershipRecord:
        project = self.db[PROJECTS].find_one({"project_id": project_id})
        if project is None:
            raise NotFoundError("Project not found")
        volunteer = self.db[VOLUNTEERS].find_one({"volunteer_id": volunteer_id})
        if volunteer is None:
            raise NotFoundError("Volunteer not found")
        if self.db[MEMBERSHIPS].find_one(
            {"volunteer_id": volunteer_id, "project_id": project_id}
        ):
            raise ConflictError("Volunteer already joined this project")

        self._claim_seat(project_id)
        doc = {
            "volunteer_id": volunteer_id,
            "project_id": project_id,
            "join_date": utcnow(),
            "role": role,
        }
        try:
            self.db[MEMBERSHIPS].insert_one(doc)
        except DuplicateKeyError as exc:
            self._release_seat(project_id)
            raise ConflictError("Volunteer already joined this project") from exc
        except Exception:
            self._release_seat(project_id)
            logger.warning(
                "Membership insert failed for volunteer=%s project=%s, seat released",
                volunteer_id,
                project_id,
            )
            raise
        return MembershipRecord(
            volunteer_id=volunteer_id,
            project_id=project_id,
            join_date=doc["join_date"],
            role=role,
            volunteer_name=volunteer["name"],
            project_name=project["name"],
        )

    def leave_project(self, volunteer_id: int, project_id: int) -> None:
        result = self.db[MEMBERSHIPS].delete_one(
            {"volunteer_id": volunteer_id, "project_id": project_id}
        )
        if result.deleted_count == 0:
            raise NotFoundError("Volunteer is not a member of this project")
        self._release_seat(project_id)

    def list_project_members(self, project_id: int) -> list[MembershipRecord]:
        pipeline = [
            {"$match": {"project_id": project_id}},
            _lookup(VOLUNTEERS, "volunteer_id", "volunteer_id", "volunteer"),
            _lookup(PROJECTS, "project_id", "project_id", "project"),
            {"$sort": {"join_date": 1, "volunteer_id": 1}},
        ]
        return [
            MembershipRecord(
                volunteer_id=doc["volunteer_id"],
                project_id=doc["project_id"],
                join_date=doc["join_date"],
                role=doc["role"],
                volunteer_name=_first_name(doc, "volunteer"),
                project_name=_first_name(doc, "project"),
            )
            for doc in self.db[MEMBERSHIPS].aggregate(pipeline)
            if doc.get("volunteer")
        ]

    def count_projects_by_status(self) -> StatusCounts:
        return self._status_counts(PROJECTS, ProjectStatus)

    # Events

    def list_events(
        self, project_id: Optional[int] = None, upcoming: bool = False
    ) -> list[EventRecord]:
        match: dict[str, Any] = {}
        if project_id is not None:
            match["project_id"] = project_id
        if upcoming:
            match["event_date"] = {"$gte": utcnow()}
            sort = {"event_date": 1, "event_id": 1}
        else:
            sort = {"event_date": -1, "event_id": -1}
        return [self._to_event(doc) for doc in self._event_docs(match, sort)]

    def list_events_for_volunteer(self, volunteer_id: int) -> list[EventRecord]:
        project_ids = self._joined_project_ids(volunteer_id)
        if not project_ids:
            return []
        statuses = {
            doc["event_id"]: doc["status"]
            for doc in self.db[ATTENDANCE].find({"volunteer_id": volunteer_id})
        }
        docs = self._event_docs(
            {"project_id": {"$in": project_ids}}, {"event_date": -1, "event_id": -1}
        )
        return [self._to_event(doc, statuses.get(doc["event_id"])) for doc in docs]

    def get_event(self, event_id: int) -> Optional[EventRecord]:
        docs = self._event_docs({"event_id": event_id}, {"event_id": 1})
        return self._to_event(docs[0]) if docs else None

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
        if self.db[PROJECTS].count_documents({"project_id": project_id}) == 0:
            raise NotFoundError("Project not found")
        event_id = self._next_id(EVENTS, "event_id")
        self.db[EVENTS].insert_one(
            {
                "event_id": event_id,
                "project_id": project_id,
                "name": name,
                "description": description,
                "event_date": normalize_datetime(event_date),
                "location": location,
                "max_participants": max_participants,
                "created_at": utcnow(),
            }
        )
        return self.get_event(event_id)

    def update_event(self, event_id: int, changes: Mapping[str, Any]) -> EventRecord:
        changes = clean_changes(changes, EVENT_UPDATE_FIELDS)
        result = self.db[EVENTS].update_one({"event_id": event_id}, {"$set": changes})
        if result.matched_count == 0:
            raise NotFoundError("Event not found")
        return self.get_event(event_id)

    def delete_event(self, event_id: int) -> None:
        result = self.db[EVENTS].delete_one({"event_id": event_id})
        if result.deleted_count == 0:
            raise NotFoundError("Event not found")
        self.db[ATTENDANCE].delete_many({"event_id": event_id})

    def count_events(self) -> EventCounts:
        return EventCounts(
            total=self.db[EVENTS].count_documents({}),
            upcoming=self.db[EVENTS].count_documents({"event_date": {"$gte": utcnow()}}),
        )

    # Attendance

    def list_attendance_for_event(self, event_id: int) -> list[AttendanceRecord]:
        records = self._attendance_records({"event_id": event_id})
        records.sort(key=lambda a: (a.volunteer_name, a.volunteer_id))
        return records

    def list_attendance_for_volunteer(
        self, volunteer_id: int
    ) -> list[AttendanceRecord]:
        records = self._attendance_records({"volunteer_id": volunteer_id})
        records.sort(key=lambda a: (a.event_date, a.event_id), reverse=True)
        return records

    def mark_attendance(
        self,
        event_id: int,
        volunteer_id: int,
        status: str = AttendanceStatus.PRESENT.value,
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        if self.db[EVENTS].count_documents({"event_id": event_id}) == 0:
            raise NotFoundError("Event not found")
        if self.db[VOLUNTEERS].count_documents({"volunteer_id": volunteer_id}) == 0:
            raise NotFoundError("Volunteer not found")
        key = {"event_id": event_id, "volunteer_id": volunteer_id}
        update = {"$set": {"status": status, "notes": notes, "marked_at": utcnow()}}
        try:
            self.db[ATTENDANCE].update_one(key, update, upsert=True)
        except DuplicateKeyError:
            # A concurrent upsert inserted the pair first; update it instead.
            self.db[ATTENDANCE].update_one(key, update)
        return self._attendance_records(key)[0]

    def delete_attendance(self, event_id: int, volunteer_id: int) -> None:
        result = self.db[ATTENDANCE].delete_one(
            {"event_id": event_id, "volunteer_id": volunteer_id}
        )
        if result.deleted_count == 0:
            raise NotFoundError("Attendance record not found")

    # Resources

    def list_resources(self, project_id: Optional[int] = None) -> list[ResourceRecord]:
        if project_id is not None:
            docs = self._resource_docs(
                {"project_id": project_id}, {"name": 1, "resource_id": 1}
            )
        else:
            docs = self._resource_docs({}, {"created_at": -1, "resource_id": -1})
        return [self._to_resource(doc) for doc in docs]

    def get_resource(self, resource_id: int) -> Optional[ResourceRecord]:
        docs = self._resource_docs({"resource_id": resource_id}, {"resource_id": 1})
        return self._to_resource(docs[0]) if docs else None

    def create_resource(
        self,
        project_id: int,
        name: str,
        quantity: int,
        *,
        type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ResourceRecord:
        if self.db[PROJECTS].count_documents({"project_id": project_id}) == 0:
            raise NotFoundError("Project not found")
        resource_id = self._next_id(RESOURCES, "resource_id")
        self.db[RESOURCES].insert_one(
            {
                "resource_id": resource_id,
                "project_id": project_id,
                "name": name,
                "type": type,
                "quantity": quantity,
                "description": description,
                "created_at": utcnow(),
            }
        )
        return self.get_resource(resource_id)

    def update_resource(
        self, resource_id: int, changes: Mapping[str, Any]
    ) -> ResourceRecord:
        changes = clean_changes(changes, RESOURCE_UPDATE_FIELDS)
        result = self.db[RESOURCES].update_one(
            {"resource_id": resource_id}, {"$set": changes}
        )
        if result.matched_count == 0:
            raise NotFoundError("Resource not found")
        return self.get_resource(resource_id)

    def delete_resource(self, resource_id: int) -> None:
        result = self.db[RESOURCES].delete_one({"resource_id": resource_id})
        if result.deleted_count == 0:
            raise NotFoundError("Resource not found")

    # Dashboards

    def admin_dashboard(self) -> AdminDashboardStats:
        volunteers = self.count_volunteers_by_status()
        projects = self.count_projects_by_status()
        events = self.count_events()
        per_project = [
            ProjectVolunteerCount(
                project_id=doc["project_id"],
                project_name=doc["name"],
                volunteer_count=int(doc["volunteer_count"]),
            )
            for doc in self._project_docs({})
        ]
        per_project.sort(key=lambda p: (-p.volunteer_count, p.project_id))
        present_per_event = [
            int(doc["count"])
            for doc in self.db[ATTENDANCE].aggregate(
                [
                    {"$match": {"status": AttendanceStatus.PRESENT.value}},
                    {"$group": {"_id": "$event_id", "count": {"$sum": 1}}},
                ]
            )
        ]
        total_present = sum(present_per_event)
        average = (
            round(total_present / len(present_per_event), 2) if present_per_event else 0.0
        )
        return AdminDashboardStats(
            total_volunteers=volunteers.total,
            active_volunteers=volunteers.by_status[VolunteerStatus.ACTIVE.value],
            total_projects=projects.total,
            active_projects=projects.by_status[ProjectStatus.ACTIVE.value],
            total_events=events.total,
            upcoming_events=events.upcoming,
            project_status_breakdown=projects.by_status,
            volunteers_per_project=per_project,
            total_attendances=total_present,
            average_attendance_per_event=float(average),
        )

    def volunteer_dashboard(self, volunteer_id: int) -> VolunteerDashboardStats:
        memberships = list(
            self.db[MEMBERSHIPS]
            .find({"volunteer_id": volunteer_id})
            .sort([("join_date", DESCENDING), ("project_id", DESCENDING)])
        )
        project_ids = [doc["project_id"] for doc in memberships]
        project_names = self._names(PROJECTS, "project_id", project_ids)
        upcoming = 0
        if project_ids:
            upcoming = self.db[EVENTS].count_documents(
                {"project_id": {"$in": project_ids}, "event_date": {"$gte": utcnow()}}
            )
        events_attended = self.db[ATTENDANCE].count_documents(
            {"volunteer_id": volunteer_id, "status": AttendanceStatus.PRESENT.value}
        )
        attendance = self.list_attendance_for_volunteer(volunteer_id)
        return VolunteerDashboardStats(
            volunteer_id=volunteer_id,
            projects_joined=len(memberships),
            events_attended=events_attended,
            upcoming_events=upcoming,
            projects=[
                VolunteerProjectSummary(
                    project_id=doc["project_id"],
                    project_name=project_names.get(doc["project_id"]),
                    join_date=doc["join_date"],
                    role=doc["role"],
                )
                for doc in memberships
                if doc["project_id"] in project_names
            ],
            recent_events=[
                VolunteerEventSummary(
                    event_id=record.event_id,
                    event_name=record.event_name,
                    event_date=record.event_date,
                    status=record.status,
                )
                for record in attendance[:RECENT_EVENTS_LIMIT]
            ],
        )

    def project_stats(self, project_id: int) -> ProjectStats:
        if self.db[PROJECTS].count_documents({"project_id": project_id}) == 0:
            raise NotFoundError("Project not found")
        event_ids = self.db[EVENTS].distinct("event_id", {"project_id": project_id})
        total_attendance = 0
        if event_ids:
            total_attendance = self.db[ATTENDANCE].count_documents(
                {
                    "event_id": {"$in": event_ids},
                    "status": AttendanceStatus.PRESENT.value,
                }
            )
        return ProjectStats(
            project_id=project_id,
            volunteer_count=self.db[MEMBERSHIPS].count_documents(
                {"project_id": project_id}
            ),
            event_count=len(event_ids),
            resource_count=self.db[RESOURCES].count_documents({"project_id": project_id}),
            total_attendance=total_attendance,
        )

    def _newest(
        self, collection: str, match: dict, date_field: str, limit: int
    ) -> list[dict]:
        """The ``limit`` newest documents plus any tied with the oldest of them."""
        newest = list(
            self.db[collection]
            .find(match, {date_field: 1})
            .sort(date_field, DESCENDING)
            .limit(limit)
        )
        if len(newest) < limit:
            return list(self.db[collection].find(match))
        cutoff = newest[-1][date_field]
        return list(self.db[collection].find({**match, date_field: {"$gte": cutoff}}))

    def recent_activity(self, limit: int = 10) -> list[ActivityRecord]:
        if limit <= 0:
            return []
        activity: list[ActivityRecord] = []

        joins = self._newest(MEMBERSHIPS, {}, "join_date", limit)
        volunteer_names = self._names(
            VOLUNTEERS, "volunteer_id", (doc["volunteer_id"] for doc in joins)
        )
        project_names = self._names(
            PROJECTS, "project_id", (doc["project_id"] for doc in joins)
        )
        for doc in joins:
            volunteer = volunteer_names.get(doc["volunteer_id"])
            project = project_names.get(doc["project_id"])
            if volunteer is None or project is None:
                continue
            activity.append(
                ActivityRecord(
                    activity_type="volunteer_joined",
                    description=f"{volunteer} joined project {project}",
                    activity_date=doc["join_date"],
                )
            )

        present = {"status": AttendanceStatus.PRESENT.value}
        marked = self._newest(ATTENDANCE, present, "marked_at", limit)
        if marked:
            cutoff = min(doc["marked_at"] for doc in marked)
            for record in self._attendance_records(
                {**present, "marked_at": {"$gte": cutoff}}
            ):
                activity.append(
                    ActivityRecord(
                        activity_type="attendance_marked",
                        description=f"{record.volunteer_name} attended {record.event_name}",
                        activity_date=record.marked_at,
                    )
                )

        for doc in self._newest(EVENTS, {}, "created_at", limit):
            activity.append(
                ActivityRecord(
                    activity_type="event_created",
                    description=f"New event: {doc['name']}",
                    activity_date=doc["created_at"],
                )
            )

        activity.sort(
            key=lambda a: (a.activity_date, a.activity_type, a.description),
            reverse=True,
        )
        return activity[:limit]
