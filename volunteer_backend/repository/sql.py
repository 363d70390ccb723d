"""
SQLAlchemy-backed repository.

Accepts any SQLAlchemy URL (Oracle or Postgres in production, SQLite for
tests). Derived counts are computed with correlated COUNT subqueries and
referential cleanup is left to ``ON DELETE CASCADE`` foreign keys.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Identity,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    exists,
    func,
    literal,
    select,
    union_all,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

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

Base = declarative_base()


class OrganizationRow(Base):
    __tablename__ = "organizations"

    org_id = Column(Integer, Identity(), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    email = Column(String(200), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False)


class VolunteerRow(Base):
    __tablename__ = "volunteers"

    volunteer_id = Column(Integer, Identity(), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    join_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False)


class ProjectRow(Base):
    __tablename__ = "projects"

    project_id = Column(Integer, Identity(), primary_key=True)
    org_id = Column(
        Integer,
        ForeignKey("organizations.org_id", ondelete="SET NULL"),
        nullable=True,
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, index=True)
    location = Column(String(500), nullable=True)
    max_volunteers = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)


class EventRow(Base):
    __tablename__ = "events"

    event_id = Column(Integer, Identity(), primary_key=True)
    project_id = Column(
        Integer,
        ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    event_date = Column(DateTime, nullable=False)
    location = Column(String(500), nullable=True)
    max_participants = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)


class MembershipRow(Base):
    __tablename__ = "volunteer_project"

    volunteer_id = Column(
        Integer,
        ForeignKey("volunteers.volunteer_id", ondelete="CASCADE"),
        primary_key=True,
    )
    project_id = Column(
        Integer,
        ForeignKey("projects.project_id", ondelete="CASCADE"),
        primary_key=True,
    )
    join_date = Column(DateTime, nullable=False)
    role = Column(String(100), nullable=False)


class AttendanceRow(Base):
    __tablename__ = "event_attendance"

    event_id = Column(
        Integer,
        ForeignKey("events.event_id", ondelete="CASCADE"),
        primary_key=True,
    )
    volunteer_id = Column(
        Integer,
        ForeignKey("volunteers.volunteer_id", ondelete="CASCADE"),
        primary_key=True,
    )
    status = Column(String(20), nullable=False)
    notes = Column(String(1000), nullable=True)
    marked_at = Column(DateTime, nullable=False)


class ResourceRow(Base):
    __tablename__ = "resources"

    resource_id = Column(Integer, Identity(), primary_key=True)
    project_id = Column(
        Integer,
        ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    type = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


def _begin_immediate(conn) -> None:
    # SQLite ignores FOR UPDATE; take the write lock at BEGIN instead.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def _is_memory_sqlite(database_url: str) -> bool:
    return make_url(database_url).database in (None, "", ":memory:")


def _engine_options(
    database_url: str, pool_min: int, pool_max: int, pool_timeout: float
) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        options: dict = {"connect_args": {"check_same_thread": False}}
        if _is_memory_sqlite(database_url):
            # One shared connection, otherwise every pooled connection
            # would see its own empty in-memory database.
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": pool_min,
        "max_overflow": max(pool_max - pool_min, 0),
        "pool_timeout": pool_timeout,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


# Correlated subqueries for derived fields.

def _volunteer_count():
    return (
        select(func.count())
        .select_from(MembershipRow)
        .where(MembershipRow.project_id == ProjectRow.project_id)
        .correlate(ProjectRow)
        .scalar_subquery()
    )


def _attendance_count():
    return (
        select(func.count())
        .select_from(AttendanceRow)
        .where(AttendanceRow.event_id == EventRow.event_id)
        .correlate(EventRow)
        .scalar_subquery()
    )


def _project_select(*extra):
    return (
        select(
            ProjectRow,
            OrganizationRow.name.label("org_name"),
            _volunteer_count().label("volunteer_count"),
            *extra,
        )
        .select_from(ProjectRow)
        .outerjoin(OrganizationRow, ProjectRow.org_id == OrganizationRow.org_id)
    )


def _event_select(*extra):
    return (
        select(
            EventRow,
            ProjectRow.name.label("project_name"),
            _attendance_count().label("attendance_count"),
            *extra,
        )
        .select_from(EventRow)
        .outerjoin(ProjectRow, EventRow.project_id == ProjectRow.project_id)
    )


def _attendance_select():
    return (
        select(
            AttendanceRow,
            VolunteerRow.name.label("volunteer_name"),
            EventRow.name.label("event_name"),
            EventRow.event_date.label("event_date"),
            ProjectRow.name.label("project_name"),
        )
        .select_from(AttendanceRow)
        .join(VolunteerRow, AttendanceRow.volunteer_id == VolunteerRow.volunteer_id)
        .join(EventRow, AttendanceRow.event_id == EventRow.event_id)
        .outerjoin(ProjectRow, EventRow.project_id == ProjectRow.project_id)
    )


def _resource_select():
    return (
        select(ResourceRow, ProjectRow.name.label("project_name"))
        .select_from(ResourceRow)
        .outerjoin(ProjectRow, ResourceRow.project_id == ProjectRow.project_id)
    )


def _status_counts(session: Session, column, statuses) -> StatusCounts:
    rows = session.execute(
        select(column, func.count()).group_by(column)
    ).all()
    found = {status: count for status, count in rows}
    by_status = {s.value: int(found.get(s.value, 0)) for s in statuses}
    return StatusCounts(total=int(sum(found.values())), by_status=by_status)


class SqlRepository:
    """
    Relational implementation of the repository contract.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_min: int = 1,
        pool_max: int = 5,
        pool_timeout: float = 120.0,
    ):
        if not database_url:
            raise ValueError("database_url is required for SqlRepository")
        self.engine = create_engine(
            database_url,
            future=True,
            **_engine_options(database_url, pool_min, pool_max, pool_timeout),
        )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
            if not _is_memory_sqlite(database_url):
                event.listen(self.engine, "connect", _disable_pysqlite_begin)
                event.listen(self.engine, "begin", _begin_immediate)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def reset(self) -> None:
        """Drop and recreate every table (useful in tests)."""
        Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)

    # Row mappers

    def _to_organization(self, row: OrganizationRow) -> OrganizationRecord:
        return OrganizationRecord(
            org_id=row.org_id,
            name=row.name,
            description=row.description,
            email=row.email,
            phone=row.phone,
            address=row.address,
            created_at=row.created_at,
        )

    def _to_volunteer(
        self, row: VolunteerRow, *, with_hash: bool = False
    ) -> VolunteerRecord:
        return VolunteerRecord(
            volunteer_id=row.volunteer_id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            join_date=row.join_date,
            status=row.status,
            role=row.role,
            created_at=row.created_at,
            password_hash=row.password_hash if with_hash else None,
        )

    def _to_project(self, result) -> ProjectRecord:
        row: ProjectRow = result[0]
        mapping = result._mapping
        is_joined = mapping.get("is_joined")
        return ProjectRecord(
            project_id=row.project_id,
            org_id=row.org_id,
            name=row.name,
            description=row.description,
            start_date=row.start_date,
            end_date=row.end_date,
            status=row.status,
            location=row.location,
            max_volunteers=row.max_volunteers,
            created_at=row.created_at,
            org_name=mapping["org_name"],
            volunteer_count=int(mapping["volunteer_count"] or 0),
            is_joined=None if is_joined is None else bool(is_joined),
            join_date=mapping.get("join_date"),
            volunteer_role=mapping.get("volunteer_role"),
        )

    def _to_event(self, result) -> EventRecord:
        row: EventRow = result[0]
        mapping = result._mapping
        return EventRecord(
            event_id=row.event_id,
            project_id=row.project_id,
            name=row.name,
            description=row.description,
            event_date=row.event_date,
            location=row.location,
            max_participants=row.max_participants,
            created_at=row.created_at,
            project_name=mapping["project_name"],
            attendance_count=int(mapping["attendance_count"] or 0),
            attendance_status=mapping.get("attendance_status"),
        )

    def _to_attendance(self, result) -> AttendanceRecord:
        row: AttendanceRow = result[0]
        mapping = result._mapping
        return AttendanceRecord(
            event_id=row.event_id,
            volunteer_id=row.volunteer_id,
            status=row.status,
            notes=row.notes,
            marked_at=row.marked_at,
            volunteer_name=mapping["volunteer_name"],
            event_name=mapping["event_name"],
            event_date=mapping["event_date"],
            project_name=mapping["project_name"],
        )

    def _to_resource(self, result) -> ResourceRecord:
        row: ResourceRow = result[0]
        return ResourceRecord(
            resource_id=row.resource_id,
            project_id=row.project_id,
            name=row.name,
            type=row.type,
            quantity=row.quantity,
            description=row.description,
            created_at=row.created_at,
            project_name=result._mapping["project_name"],
        )

    # Health

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(literal(1)))
        return True

    # Organizations

    def list_organizations(self) -> list[OrganizationRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(OrganizationRow).order_by(
                    OrganizationRow.name.asc(), OrganizationRow.org_id.asc()
                )
            ).scalars()
            return [self._to_organization(row) for row in rows]

    def create_organization(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> OrganizationRecord:
        with self.Session() as session:
            row = OrganizationRow(
                name=name,
                description=description,
                email=email,
                phone=phone,
                address=address,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_organization(row)

    # Volunteers

    def list_volunteers(self, status: Optional[str] = None) -> list[VolunteerRecord]:
        stmt = select(VolunteerRow)
        if status:
            stmt = stmt.where(VolunteerRow.status == status).order_by(
                VolunteerRow.name.asc(), VolunteerRow.volunteer_id.asc()
            )
        else:
            stmt = stmt.order_by(
                VolunteerRow.created_at.desc(), VolunteerRow.volunteer_id.desc()
            )
        with self.Session() as session:
            return [self._to_volunteer(row) for row in session.execute(stmt).scalars()]

    def get_volunteer(self, volunteer_id: int) -> Optional[VolunteerRecord]:
        with self.Session() as session:
            row = session.get(VolunteerRow, volunteer_id)
            return self._to_volunteer(row) if row else None

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        with self.Session() as session:
            row = session.execute(
                select(VolunteerRow).where(
                    func.lower(VolunteerRow.email) == email.strip().lower()
                )
            ).scalar_one_or_none()
            return self._to_volunteer(row, with_hash=True) if row else None

    def email_exists(
        self, email: str, exclude_volunteer_id: Optional[int] = None
    ) -> bool:
        stmt = select(func.count()).select_from(VolunteerRow).where(
            func.lower(VolunteerRow.email) == email.strip().lower()
        )
        if exclude_volunteer_id is not None:
            stmt = stmt.where(VolunteerRow.volunteer_id != exclude_volunteer_id)
        with self.Session() as session:
            return (session.scalar(stmt) or 0) > 0

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
        try:
            with self.Session.begin() as session:
                row = VolunteerRow(
                    name=name,
                    email=email.strip().lower(),
                    password_hash=password_hash,
                    phone=phone or None,
                    join_date=now,
                    status=VolunteerStatus.ACTIVE.value,
                    role=role,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                return self._to_volunteer(row)
        except IntegrityError as exc:
            # The unique email constraint catches a concurrent registration.
            raise ConflictError("Email already registered") from exc

    def update_volunteer(
        self, volunteer_id: int, changes: Mapping[str, Any]
    ) -> VolunteerRecord:
        changes = clean_changes(changes, VOLUNTEER_UPDATE_FIELDS)
        if changes.get("email"):
            changes["email"] = changes["email"].strip().lower()
            if self.email_exists(changes["email"], exclude_volunteer_id=volunteer_id):
                raise ConflictError("Email already registered")
        try:
            with self.Session.begin() as session:
                row = session.get(VolunteerRow, volunteer_id)
                if row is None:
                    raise NotFoundError("Volunteer not found")
                for key, value in changes.items():
                    setattr(row, key, value)
                session.flush()
                return self._to_volunteer(row)
        except IntegrityError as exc:
            raise ConflictError("Email already registered") from exc

    def set_password_hash(self, volunteer_id: int, password_hash: str) -> None:
        with self.Session.begin() as session:
            row = session.get(VolunteerRow, volunteer_id)
            if row is None:
                raise NotFoundError("Volunteer not found")
            row.password_hash = password_hash

    def delete_volunteer(self, volunteer_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(
                delete(VolunteerRow).where(VolunteerRow.volunteer_id == volunteer_id)
            )
            if not result.rowcount:
                raise NotFoundError("Volunteer not found")

    def count_volunteers_by_status(self) -> StatusCounts:
        with self.Session() as session:
            return _status_counts(session, VolunteerRow.status, VolunteerStatus)

    # Projects

    def list_projects(
        self,
        status: Optional[str] = None,
        volunteer_id: Optional[int] = None,
    ) -> list[ProjectRecord]:
        extra = []
        if volunteer_id is not None:
            extra.append(
                exists()
                .where(
                    MembershipRow.project_id == ProjectRow.project_id,
                    MembershipRow.volunteer_id == volunteer_id,
                )
                .correlate(ProjectRow)
                .label("is_joined")
            )
        stmt = _project_select(*extra)
        if status:
            stmt = stmt.where(ProjectRow.status == status)
        stmt = stmt.order_by(ProjectRow.created_at.desc(), ProjectRow.project_id.desc())
        with self.Session() as session:
            return [self._to_project(result) for result in session.execute(stmt)]

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        stmt = _project_select().where(ProjectRow.project_id == project_id)
        with self.Session() as session:
            result = session.execute(stmt).first()
            return self._to_project(result) if result else None

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
        with self.Session() as session:
            if org_id is not None and session.get(OrganizationRow, org_id) is None:
                raise NotFoundError("Organization not found")
            row = ProjectRow(
                org_id=org_id,
                name=name,
                description=description,
                start_date=normalize_datetime(start_date),
                end_date=normalize_datetime(end_date),
                status=status,
                location=location,
                max_volunteers=max_volunteers,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            project_id = row.project_id
        return self.get_project(project_id)

    def update_project(
        self, project_id: int, changes: Mapping[str, Any]
    ) -> ProjectRecord:
        changes = clean_changes(changes, PROJECT_UPDATE_FIELDS)
        with self.Session.begin() as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                raise NotFoundError("Project not found")
            org_id = changes.get("org_id")
            if org_id is not None and session.get(OrganizationRow, org_id) is None:
                raise NotFoundError("Organization not found")
            check_project_dates(
                changes.get("start_date", row.start_date),
                changes.get("end_date", row.end_date),
            )
            for key, value in changes.items():
                setattr(row, key, value)
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(
                delete(ProjectRow).where(ProjectRow.project_id == project_id)
            )
            if not result.rowcount:
                raise NotFoundError("Project not found")

    def list_projects_for_volunteer(self, volunteer_id: int) -> list[ProjectRecord]:
        stmt = (
            _project_select(
                MembershipRow.join_date.label("join_date"),
                MembershipRow.role.label("volunteer_role"),
            )
            .join(MembershipRow, MembershipRow.project_id == ProjectRow.project_id)
            .where(MembershipRow.volunteer_id == volunteer_id)
            .order_by(MembershipRow.join_date.desc(), ProjectRow.project_id.desc())
        )
        with self.Session() as session:
            return [self._to_project(result) for result in session.execute(stmt)]

    def join_project(
        self, volunteer_id: int, project_id: int, role: str = "participant"
    ) -> MembershipRecord:
        try:
            with self.Session.begin() as session:
                # Locking the project row serialises concurrent joins so the
                # capacity check and the insert see the same member count.
                project = session.execute(
                    select(ProjectRow)
                    .where(ProjectRow.project_id == project_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if project is None:
                    raise NotFoundError("Project not found")
                volunteer = session.get(VolunteerRow, volunteer_id)
                if volunteer is None:
                    raise NotFoundError("Volunteer not found")
                if session.get(MembershipRow, (volunteer_id, project_id)) is not None:
                    raise ConflictError("Volunteer already joined this project")
                current = session.scalar(
                    select(func.count())
                    .select_from(MembershipRow)
                    .where(MembershipRow.project_id == project_id)
                )
                if (current or 0) >= project.max_volunteers:
                    raise ConflictError(
                        "Project has reached maximum volunteer capacity"
                    )
                membership = MembershipRow(
                    volunteer_id=volunteer_id,
                    project_id=project_id,
                    join_date=utcnow(),
                    role=role,
                )
                session.add(membership)
                session.flush()
                return MembershipRecord(
                    volunteer_id=volunteer_id,
                    project_id=project_id,
                    join_date=membership.join_date,
                    role=membership.role,
                    volunteer_name=volunteer.name,
                    project_name=project.name,
                )
        except IntegrityError as exc:
            raise ConflictError("Volunteer already joined this project") from exc

    def leave_project(self, volunteer_id: int, project_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(
                delete(MembershipRow).where(
                    MembershipRow.volunteer_id == volunteer_id,
                    MembershipRow.project_id == project_id,
                )
            )
            if not result.rowcount:
                raise NotFoundError("Volunteer is not a member of this project")

    def list_project_members(self, project_id: int) -> list[MembershipRecord]:
        stmt = (
            select(
                MembershipRow,
                VolunteerRow.name.label("volunteer_name"),
                ProjectRow.name.label("project_name"),
            )
            .join(VolunteerRow, MembershipRow.volunteer_id == VolunteerRow.volunteer_id)
            .join(ProjectRow, MembershipRow.project_id == ProjectRow.project_id)
            .where(MembershipRow.project_id == project_id)
            .order_by(MembershipRow.join_date.asc(), MembershipRow.volunteer_id.asc())
        )
        with self.Session() as session:
            members = []
            for membership, volunteer_name, project_name in session.execute(stmt):
                members.append(
                    MembershipRecord(
                        volunteer_id=membership.volunteer_id,
                        project_id=membership.project_id,
                        join_date=membership.join_date,
                        role=membership.role,
                        volunteer_name=volunteer_name,
                        project_name=project_name,
                    )
                )
            return members

    def count_projects_by_status(self) -> StatusCounts:
        with self.Session() as session:
            return _status_counts(session, ProjectRow.status, ProjectStatus)

    # Events

    def list_events(
        self, project_id: Optional[int] = None, upcoming: bool = False
    ) -> list[EventRecord]:
        stmt = _event_select()
        if project_id is not None:
            stmt = stmt.where(EventRow.project_id == project_id)
        if upcoming:
            stmt = stmt.where(EventRow.event_date >= utcnow()).order_by(
                EventRow.event_date.asc(), EventRow.event_id.asc()
            )
        else:
            stmt = stmt.order_by(EventRow.event_date.desc(), EventRow.event_id.desc())
        with self.Session() as session:
            return [self._to_event(result) for result in session.execute(stmt)]

    def list_events_for_volunteer(self, volunteer_id: int) -> list[EventRecord]:
        my_status = (
            select(AttendanceRow.status)
            .where(
                AttendanceRow.event_id == EventRow.event_id,
                AttendanceRow.volunteer_id == volunteer_id,
            )
            .correlate(EventRow)
            .scalar_subquery()
        )
        stmt = (
            _event_select(my_status.label("attendance_status"))
            .join(MembershipRow, MembershipRow.project_id == EventRow.project_id)
            .where(MembershipRow.volunteer_id == volunteer_id)
            .order_by(EventRow.event_date.desc(), EventRow.event_id.desc())
        )
        with self.Session() as session:
            return [self._to_event(result) for result in session.execute(stmt)]

    def get_event(self, event_id: int) -> Optional[EventRecord]:
        stmt = _event_select().where(EventRow.event_id == event_id)
        with self.Session() as session:
            result = session.execute(stmt).first()
            return self._to_event(result) if result else None

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
        with self.Session() as session:
            if session.get(ProjectRow, project_id) is None:
                raise NotFoundError("Project not found")
            row = EventRow(
                project_id=project_id,
                name=name,
                description=description,
                event_date=normalize_datetime(event_date),
                location=location,
                max_participants=max_participants,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            event_id = row.event_id
        return self.get_event(event_id)

    def update_event(self, event_id: int, changes: Mapping[str, Any]) -> EventRecord:
        changes = clean_changes(changes, EVENT_UPDATE_FIELDS)
        with self.Session.begin() as session:
            row = session.get(EventRow, event_id)
            if row is None:
                raise NotFoundError("Event not found")
            for key, value in changes.items():
                setattr(row, key, value)
        return self.get_event(event_id)

    def delete_event(self, event_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(delete(EventRow).where(EventRow.event_id == event_id))
            if not result.rowcount:
                raise NotFoundError("Event not found")

    def count_events(self) -> EventCounts:
        now = utcnow()
        with self.Session() as session:
            total = session.scalar(select(func.count()).select_from(EventRow)) or 0
            upcoming = (
                session.scalar(
                    select(func.count())
                    .select_from(EventRow)
                    .where(EventRow.event_date >= now)
                )
                or 0
            )
            return EventCounts(total=int(total), upcoming=int(upcoming))

    # Attendance

    def list_attendance_for_event(self, event_id: int) -> list[AttendanceRecord]:
        stmt = (
            _attendance_select()
            .where(AttendanceRow.event_id == event_id)
            .order_by(VolunteerRow.name.asc(), AttendanceRow.volunteer_id.asc())
        )
        with self.Session() as session:
            return [self._to_attendance(result) for result in session.execute(stmt)]

    def list_attendance_for_volunteer(
        self, volunteer_id: int
    ) -> list[AttendanceRecord]:
        stmt = (
            _attendance_select()
            .where(AttendanceRow.volunteer_id == volunteer_id)
            .order_by(EventRow.event_date.desc(), AttendanceRow.event_id.desc())
        )
        with self.Session() as session:
            return [self._to_attendance(result) for result in session.execute(stmt)]

    def _get_attendance(self, event_id: int, volunteer_id: int) -> AttendanceRecord:
        stmt = _attendance_select().where(
            AttendanceRow.event_id == event_id,
            AttendanceRow.volunteer_id == volunteer_id,
        )
        with self.Session() as session:
            return self._to_attendance(session.execute(stmt).one())

    def mark_attendance(
        self,
        event_id: int,
        volunteer_id: int,
        status: str = AttendanceStatus.PRESENT.value,
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        try:
            self._upsert_attendance(event_id, volunteer_id, status, notes)
        except IntegrityError:
            # Another request inserted the same pair first; the row now
            # exists, so the second attempt takes the update path.
            logger.info(
                "Attendance insert raced for event=%s volunteer=%s, retrying as update",
                event_id,
                volunteer_id,
            )
            self._upsert_attendance(event_id, volunteer_id, status, notes)
        return self._get_attendance(event_id, volunteer_id)

    def _upsert_attendance(
        self, event_id: int, volunteer_id: int, status: str, notes: Optional[str]
    ) -> None:
        with self.Session.begin() as session:
            if session.get(EventRow, event_id) is None:
                raise NotFoundError("Event not found")
            if session.get(VolunteerRow, volunteer_id) is None:
                raise NotFoundError("Volunteer not found")
            row = session.get(
                AttendanceRow, (event_id, volunteer_id), with_for_update=True
            )
            now = utcnow()
            if row is None:
                session.add(
                    AttendanceRow(
                        event_id=event_id,
                        volunteer_id=volunteer_id,
                        status=status,
                        notes=notes,
                        marked_at=now,
                    )
                )
            else:
                row.status = status
                row.notes = notes
                row.marked_at = now

    def delete_attendance(self, event_id: int, volunteer_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(
                delete(AttendanceRow).where(
                    AttendanceRow.event_id == event_id,
                    AttendanceRow.volunteer_id == volunteer_id,
                )
            )
            if not result.rowcount:
                raise NotFoundError("Attendance record not found")

    # Resources

    def list_resources(self, project_id: Optional[int] = None) -> list[ResourceRecord]:
        stmt = _resource_select()
        if project_id is not None:
            stmt = stmt.where(ResourceRow.project_id == project_id).order_by(
                ResourceRow.name.asc(), ResourceRow.resource_id.asc()
            )
        else:
            stmt = stmt.order_by(
                ResourceRow.created_at.desc(), ResourceRow.resource_id.desc()
            )
        with self.Session() as session:
            return [self._to_resource(result) for result in session.execute(stmt)]

    def get_resource(self, resource_id: int) -> Optional[ResourceRecord]:
        stmt = _resource_select().where(ResourceRow.resource_id == resource_id)
        with self.Session() as session:
            result = session.execute(stmt).first()
            return self._to_resource(result) if result else None

    def create_resource(
        self,
        project_id: int,
        name: str,
        quantity: int,
        *,
        type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ResourceRecord:
        with self.Session() as session:
            if session.get(ProjectRow, project_id) is None:
                raise NotFoundError("Project not found")
            row = ResourceRow(
                project_id=project_id,
                name=name,
                type=type,
                quantity=quantity,
                description=description,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            resource_id = row.resource_id
        return self.get_resource(resource_id)

    def update_resource(
        self, resource_id: int, changes: Mapping[str, Any]
    ) -> ResourceRecord:
        changes = clean_changes(changes, RESOURCE_UPDATE_FIELDS)
        with self.Session.begin() as session:
            row = session.get(ResourceRow, resource_id)
            if row is None:
                raise NotFoundError("Resource not found")
            for key, value in changes.items():
                setattr(row, key, value)
        return self.get_resource(resource_id)

    def delete_resource(self, resource_id: int) -> None:
        with self.Session.begin() as session:
            result = session.execute(
                delete(ResourceRow).where(ResourceRow.resource_id == resource_id)
            )
            if not result.rowcount:
                raise NotFoundError("Resource not found")

    # Dashboards

    def admin_dashboard(self) -> AdminDashboardStats:
        volunteers = self.count_volunteers_by_status()
        projects = self.count_projects_by_status()
        events = self.count_events()
        per_project_stmt = _project_select().order_by(
            _volunteer_count().desc(), ProjectRow.project_id.asc()
        )
        with self.Session() as session:
            per_project = [
                ProjectVolunteerCount(
                    project_id=result[0].project_id,
                    project_name=result[0].name,
                    volunteer_count=int(result._mapping["volunteer_count"] or 0),
                )
                for result in session.execute(per_project_stmt)
            ]
            present = AttendanceRow.status == AttendanceStatus.PRESENT.value
            total_present = (
                session.scalar(select(func.count()).select_from(AttendanceRow).where(present))
                or 0
            )
            events_with_present = (
                session.scalar(
                    select(func.count(func.distinct(AttendanceRow.event_id))).where(present)
                )
                or 0
            )
        average = (
            round(total_present / events_with_present, 2) if events_with_present else 0.0
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
            total_attendances=int(total_present),
            average_attendance_per_event=float(average),
        )

    def volunteer_dashboard(self, volunteer_id: int) -> VolunteerDashboardStats:
        now = utcnow()
        with self.Session() as session:
            projects_joined = session.scalar(
                select(func.count())
                .select_from(MembershipRow)
                .where(MembershipRow.volunteer_id == volunteer_id)
            )
            events_attended = session.scalar(
                select(func.count())
                .select_from(AttendanceRow)
                .where(
                    AttendanceRow.volunteer_id == volunteer_id,
                    AttendanceRow.status == AttendanceStatus.PRESENT.value,
                )
            )
            upcoming = session.scalar(
                select(func.count())
                .select_from(EventRow)
                .join(MembershipRow, MembershipRow.project_id == EventRow.project_id)
                .where(
                    MembershipRow.volunteer_id == volunteer_id,
                    EventRow.event_date >= now,
                )
            )
            project_rows = session.execute(
                select(
                    ProjectRow.project_id,
                    ProjectRow.name,
                    MembershipRow.join_date,
                    MembershipRow.role,
                )
                .join(MembershipRow, MembershipRow.project_id == ProjectRow.project_id)
                .where(MembershipRow.volunteer_id == volunteer_id)
                .order_by(MembershipRow.join_date.desc(), ProjectRow.project_id.desc())
            ).all()
            event_rows = session.execute(
                select(
                    EventRow.event_id,
                    EventRow.name,
                    EventRow.event_date,
                    AttendanceRow.status,
                )
                .join(AttendanceRow, AttendanceRow.event_id == EventRow.event_id)
                .where(AttendanceRow.volunteer_id == volunteer_id)
                .order_by(EventRow.event_date.desc(), EventRow.event_id.desc())
                .limit(RECENT_EVENTS_LIMIT)
            ).all()
        return VolunteerDashboardStats(
            volunteer_id=volunteer_id,
            projects_joined=int(projects_joined or 0),
            events_attended=int(events_attended or 0),
            upcoming_events=int(upcoming or 0),
            projects=[
                VolunteerProjectSummary(
                    project_id=project_id,
                    project_name=name,
                    join_date=join_date,
                    role=role,
                )
                for project_id, name, join_date, role in project_rows
            ],
            recent_events=[
                VolunteerEventSummary(
                    event_id=event_id,
                    event_name=name,
                    event_date=event_date,
                    status=status,
                )
                for event_id, name, event_date, status in event_rows
            ],
        )

    def project_stats(self, project_id: int) -> ProjectStats:
        with self.Session() as session:
            if session.get(ProjectRow, project_id) is None:
                raise NotFoundError("Project not found")

            def count(stmt) -> int:
                return int(session.scalar(stmt) or 0)

            return ProjectStats(
                project_id=project_id,
                volunteer_count=count(
                    select(func.count())
                    .select_from(MembershipRow)
                    .where(MembershipRow.project_id == project_id)
                ),
                event_count=count(
                    select(func.count())
                    .select_from(EventRow)
                    .where(EventRow.project_id == project_id)
                ),
                resource_count=count(
                    select(func.count())
                    .select_from(ResourceRow)
                    .where(ResourceRow.project_id == project_id)
                ),
                total_attendance=count(
                    select(func.count())
                    .select_from(AttendanceRow)
                    .join(EventRow, AttendanceRow.event_id == EventRow.event_id)
                    .where(
                        EventRow.project_id == project_id,
                        AttendanceRow.status == AttendanceStatus.PRESENT.value,
                    )
                ),
            )

    def recent_activity(self, limit: int = 10) -> list[ActivityRecord]:
        joined = (
            select(
                literal("volunteer_joined").label("activity_type"),
                (VolunteerRow.name + " joined project " + ProjectRow.name).label(
                    "description"
                ),
                MembershipRow.join_date.label("activity_date"),
            )
            .select_from(MembershipRow)
            .join(VolunteerRow, MembershipRow.volunteer_id == VolunteerRow.volunteer_id)
            .join(ProjectRow, MembershipRow.project_id == ProjectRow.project_id)
        )
        attended = (
            select(
                literal("attendance_marked").label("activity_type"),
                (VolunteerRow.name + " attended " + EventRow.name).label("description"),
                AttendanceRow.marked_at.label("activity_date"),
            )
            .select_from(AttendanceRow)
            .join(VolunteerRow, AttendanceRow.volunteer_id == VolunteerRow.volunteer_id)
            .join(EventRow, AttendanceRow.event_id == EventRow.event_id)
            .where(AttendanceRow.status == AttendanceStatus.PRESENT.value)
        )
        created = select(
            literal("event_created").label("activity_type"),
            ("New event: " + EventRow.name).label("description"),
            EventRow.created_at.label("activity_date"),
        )
        activity = union_all(joined, attended, created).subquery()
        stmt = (
            select(activity.c.activity_type, activity.c.description, activity.c.activity_date)
            .order_by(
                activity.c.activity_date.desc(),
                activity.c.activity_type.desc(),
                activity.c.description.desc(),
            )
            .limit(limit)
        )
        with self.Session() as session:
            return [
                ActivityRecord(
                    activity_type=activity_type,
                    description=description,
                    activity_date=activity_date,
                )
                for activity_type, description, activity_date in session.execute(stmt)
            ]
