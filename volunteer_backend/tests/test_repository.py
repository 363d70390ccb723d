import tempfile
import threading
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest import mock

import mongomock
from pymongo.errors import AutoReconnect

from volunteer_backend.errors import ConflictError, NotFoundError
from volunteer_backend.repository import MongoRepository, SqlRepository
from volunteer_backend.repository.records import utcnow
from volunteer_backend.schemas import to_payload

# Fixed dates so both backends store identical values.
NOW = utcnow().replace(microsecond=0)
NEXT_MONTH = NOW + timedelta(days=30)
NEXT_WEEK = NOW + timedelta(days=7)
LAST_MONTH = NOW - timedelta(days=30)

# Fields stamped by the server at write time; they differ between runs.
SERVER_TIMESTAMPS = {"created_at", "join_date", "marked_at", "activity_date"}


class RepositoryContract:
    """
    Behaviour every repository must share. Mixed into one TestCase per backend.
    """

    def make_repository(self):
        raise NotImplementedError

    def setUp(self):
        self.repo = self.make_repository()

    def _volunteer(self, name="Vera", email=None):
        return self.repo.create_volunteer(
            name, email or f"{name.lower()}@example.com", "hash"
        )

    def _project(self, name="Beach Cleanup", max_volunteers=5, **kwargs):
        return self.repo.create_project(
            name, NEXT_MONTH, max_volunteers=max_volunteers, **kwargs
        )

    def _event(self, project, name="Kickoff", when=NEXT_WEEK):
        return self.repo.create_event(
            project.project_id, name, when, max_participants=20
        )

    # Volunteers

    def test_create_volunteer_defaults(self):
        volunteer = self.repo.create_volunteer(
            "Vera", "Vera@Example.COM", "hash", phone="555"
        )
        self.assertEqual(volunteer.email, "vera@example.com")
        self.assertEqual(volunteer.role, "volunteer")
        self.assertEqual(volunteer.status, "active")
        self.assertIsNone(volunteer.password_hash)
        self.assertNotIn("password_hash", volunteer.as_dict())

        account = self.repo.get_volunteer_by_email("VERA@example.com")
        self.assertEqual(account.volunteer_id, volunteer.volunteer_id)
        self.assertEqual(account.password_hash, "hash")

    def test_duplicate_email_is_rejected_case_insensitively(self):
        self.repo.create_volunteer("First", "x@y.com", "hash")
        with self.assertRaises(ConflictError):
            self.repo.create_volunteer("Second", "X@Y.COM", "hash")
        self.assertEqual(len(self.repo.list_volunteers()), 1)

    def test_ids_are_issued_in_sequence(self):
        first = self._volunteer("Ann")
        second = self._volunteer("Bob")
        self.assertEqual(second.volunteer_id, first.volunteer_id + 1)

    def test_update_volunteer_applies_only_sent_fields(self):
        volunteer = self.repo.create_volunteer("Vera", "vera@example.com", "hash", phone="555")
        updated = self.repo.update_volunteer(
            volunteer.volunteer_id, {"name": "Vera Lynn", "status": "inactive"}
        )
        self.assertEqual(updated.name, "Vera Lynn")
        self.assertEqual(updated.status, "inactive")
        self.assertEqual(updated.phone, "555")
        self.assertEqual(updated.email, "vera@example.com")

    def test_update_volunteer_rejects_taken_email(self):
        self._volunteer("Ann")
        bob = self._volunteer("Bob")
        with self.assertRaises(ConflictError):
            self.repo.update_volunteer(bob.volunteer_id, {"email": "ANN@example.com"})

    def test_update_rejects_unknown_and_empty_changes(self):
        volunteer = self._volunteer()
        with self.assertRaises(ValueError):
            self.repo.update_volunteer(volunteer.volunteer_id, {})
        with self.assertRaises(ValueError):
            self.repo.update_volunteer(volunteer.volunteer_id, {"role": "admin"})
        with self.assertRaises(NotFoundError):
            self.repo.update_volunteer(999, {"name": "Nobody"})

    def test_set_password_hash(self):
        volunteer = self._volunteer()
        self.repo.set_password_hash(volunteer.volunteer_id, "new-hash")
        account = self.repo.get_volunteer_by_email(volunteer.email)
        self.assertEqual(account.password_hash, "new-hash")
        with self.assertRaises(NotFoundError):
            self.repo.set_password_hash(999, "x")

    def test_list_volunteers_by_status_and_counts(self):
        ann = self._volunteer("Ann")
        self._volunteer("Bob")
        self.repo.update_volunteer(ann.volunteer_id, {"status": "suspended"})

        active = self.repo.list_volunteers("active")
        self.assertEqual([v.name for v in active], ["Bob"])

        counts = self.repo.count_volunteers_by_status()
        self.assertEqual(counts.total, 2)
        self.assertEqual(
            counts.by_status, {"active": 1, "inactive": 0, "suspended": 1}
        )

    def test_email_exists_can_exclude_self(self):
        volunteer = self._volunteer()
        self.assertTrue(self.repo.email_exists("VERA@example.com"))
        self.assertFalse(
            self.repo.email_exists(
                "vera@example.com", exclude_volunteer_id=volunteer.volunteer_id
            )
        )

    # Organizations and projects

    def test_project_carries_organization_name(self):
        org = self.repo.create_organization("Green Earth", email="hi@green.org")
        project = self._project(org_id=org.org_id, description="Pick up litter")
        self.assertEqual(project.org_name, "Green Earth")
        self.assertEqual(project.volunteer_count, 0)
        self.assertEqual(project.status, "planned")
        self.assertEqual(project.start_date, NEXT_MONTH)
        self.assertEqual(
            [o.name for o in self.repo.list_organizations()], ["Green Earth"]
        )

    def test_update_project_partial(self):
        project = self._project(location="Pier 4")
        updated = self.repo.update_project(
            project.project_id, {"name": "Harbor Cleanup", "end_date": None}
        )
        self.assertEqual(updated.name, "Harbor Cleanup")
        self.assertEqual(updated.location, "Pier 4")
        self.assertEqual(updated.max_volunteers, 5)
        with self.assertRaises(NotFoundError):
            self.repo.update_project(999, {"name": "Ghost"})

    def test_project_requires_existing_organization(self):
        with self.assertRaises(NotFoundError):
            self._project(org_id=999)
        self.assertEqual(self.repo.list_projects(), [])

        project = self._project()
        with self.assertRaises(NotFoundError):
            self.repo.update_project(project.project_id, {"org_id": 999})
        self.assertIsNone(self.repo.get_project(project.project_id).org_id)

        org = self.repo.create_organization("Green Earth")
        moved = self.repo.update_project(project.project_id, {"org_id": org.org_id})
        self.assertEqual(moved.org_name, "Green Earth")
        cleared = self.repo.update_project(project.project_id, {"org_id": None})
        self.assertIsNone(cleared.org_id)

    def test_project_end_date_not_before_start(self):
        with self.assertRaises(ValueError):
            self._project(end_date=NEXT_WEEK)

        project = self._project(end_date=NEXT_MONTH + timedelta(days=10))
        with self.assertRaises(ValueError):
            self.repo.update_project(project.project_id, {"end_date": NEXT_WEEK})
        with self.assertRaises(ValueError):
            self.repo.update_project(
                project.project_id, {"start_date": NEXT_MONTH + timedelta(days=20)}
            )
        unchanged = self.repo.get_project(project.project_id)
        self.assertEqual(unchanged.start_date, NEXT_MONTH)
        self.assertEqual(unchanged.end_date, NEXT_MONTH + timedelta(days=10))

        moved = self.repo.update_project(
            project.project_id,
            {"start_date": NEXT_WEEK, "end_date": NEXT_WEEK + timedelta(days=1)},
        )
        self.assertEqual(moved.start_date, NEXT_WEEK)

    def test_list_projects_filters_and_marks_joined(self):
        vera = self._volunteer()
        beach = self._project("Beach Cleanup")
        park = self._project("Park Planting", status="active")
        self.repo.join_project(vera.volunteer_id, beach.project_id)

        projects = self.repo.list_projects(volunteer_id=vera.volunteer_id)
        self.assertEqual([p.name for p in projects], ["Park Planting", "Beach Cleanup"])
        joined = {p.project_id: p.is_joined for p in projects}
        self.assertEqual(joined, {beach.project_id: True, park.project_id: False})

        active = self.repo.list_projects(status="active")
        self.assertEqual([p.project_id for p in active], [park.project_id])
        self.assertIsNone(active[0].is_joined)

    def test_list_projects_for_volunteer(self):
        vera = self._volunteer()
        beach = self._project("Beach Cleanup")
        self._project("Park Planting")
        self.repo.join_project(vera.volunteer_id, beach.project_id, role="lead")

        mine = self.repo.list_projects_for_volunteer(vera.volunteer_id)
        self.assertEqual(len(mine), 1)
        self.assertEqual(mine[0].project_id, beach.project_id)
        self.assertEqual(mine[0].volunteer_role, "lead")
        self.assertIsNotNone(mine[0].join_date)
        self.assertEqual(mine[0].volunteer_count, 1)

    # Membership

    def test_capacity_one_join_leave_sequence(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=1)

        self.repo.join_project(ann.volunteer_id, project.project_id)
        with self.assertRaises(ConflictError):
            self.repo.join_project(bob.volunteer_id, project.project_id)

        self.repo.leave_project(ann.volunteer_id, project.project_id)
        membership = self.repo.join_project(bob.volunteer_id, project.project_id)
        self.assertEqual(membership.volunteer_name, "Bob")
        self.assertEqual(membership.role, "participant")
        self.assertEqual(self.repo.get_project(project.project_id).volunteer_count, 1)

    def test_duplicate_join_conflicts(self):
        vera = self._volunteer()
        project = self._project()
        self.repo.join_project(vera.volunteer_id, project.project_id)
        with self.assertRaises(ConflictError):
            self.repo.join_project(vera.volunteer_id, project.project_id)
        self.assertEqual(self.repo.get_project(project.project_id).volunteer_count, 1)

    def test_leave_when_not_member_fails(self):
        vera = self._volunteer()
        project = self._project()
        with self.assertRaises(NotFoundError):
            self.repo.leave_project(vera.volunteer_id, project.project_id)

    def test_join_unknown_project_or_volunteer(self):
        vera = self._volunteer()
        project = self._project()
        with self.assertRaises(NotFoundError):
            self.repo.join_project(vera.volunteer_id, 999)
        with self.assertRaises(NotFoundError):
            self.repo.join_project(999, project.project_id)

    def test_lowering_capacity_blocks_new_joins(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=3)
        self.repo.join_project(ann.volunteer_id, project.project_id)
        self.repo.update_project(project.project_id, {"max_volunteers": 1})
        with self.assertRaises(ConflictError):
            self.repo.join_project(bob.volunteer_id, project.project_id)

    def test_project_members_in_join_order(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project()
        self.repo.join_project(ann.volunteer_id, project.project_id)
        self.repo.join_project(bob.volunteer_id, project.project_id, role="driver")
        members = self.repo.list_project_members(project.project_id)
        self.assertEqual([m.volunteer_name for m in members], ["Ann", "Bob"])
        self.assertEqual(members[1].role, "driver")
        self.assertEqual(members[0].project_name, "Beach Cleanup")

    # Events and attendance

    def test_event_listing_order_and_upcoming_filter(self):
        project = self._project()
        past = self._event(project, "Planning", when=LAST_MONTH)
        soon = self._event(project, "Kickoff", when=NEXT_WEEK)
        later = self._event(project, "Cleanup Day", when=NEXT_MONTH)

        all_events = self.repo.list_events()
        self.assertEqual(
            [e.event_id for e in all_events],
            [later.event_id, soon.event_id, past.event_id],
        )
        upcoming = self.repo.list_events(upcoming=True)
        self.assertEqual([e.event_id for e in upcoming], [soon.event_id, later.event_id])
        self.assertEqual(upcoming[0].project_name, "Beach Cleanup")

        counts = self.repo.count_events()
        self.assertEqual((counts.total, counts.upcoming), (3, 2))

    def test_create_event_for_unknown_project(self):
        with self.assertRaises(NotFoundError):
            self.repo.create_event(999, "Orphan", NEXT_WEEK, max_participants=5)

    def test_attendance_upsert_absent_then_present(self):
        vera = self._volunteer()
        project = self._project()
        event = self._event(project)

        first = self.repo.mark_attendance(event.event_id, vera.volunteer_id, "absent")
        self.assertEqual(first.status, "absent")
        second = self.repo.mark_attendance(
            event.event_id, vera.volunteer_id, "present", notes="late"
        )
        self.assertEqual(second.status, "present")
        self.assertEqual(second.notes, "late")
        self.assertEqual(second.event_name, "Kickoff")
        self.assertEqual(second.project_name, "Beach Cleanup")

        records = self.repo.list_attendance_for_event(event.event_id)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].status, "present")
        self.assertEqual(self.repo.get_event(event.event_id).attendance_count, 1)

    def test_mark_attendance_requires_event_and_volunteer(self):
        vera = self._volunteer()
        event = self._event(self._project())
        with self.assertRaises(NotFoundError):
            self.repo.mark_attendance(999, vera.volunteer_id)
        with self.assertRaises(NotFoundError):
            self.repo.mark_attendance(event.event_id, 999)

    def test_delete_attendance(self):
        vera = self._volunteer()
        event = self._event(self._project())
        self.repo.mark_attendance(event.event_id, vera.volunteer_id)
        self.repo.delete_attendance(event.event_id, vera.volunteer_id)
        self.assertEqual(self.repo.list_attendance_for_event(event.event_id), [])
        with self.assertRaises(NotFoundError):
            self.repo.delete_attendance(event.event_id, vera.volunteer_id)

    def test_events_for_volunteer_carry_own_status(self):
        vera = self._volunteer()
        project = self._project()
        other = self._project("Elsewhere")
        kickoff = self._event(project, "Kickoff", when=NEXT_WEEK)
        self._event(project, "Wrap Up", when=NEXT_MONTH)
        self._event(other, "Not Mine")
        self.repo.join_project(vera.volunteer_id, project.project_id)
        self.repo.mark_attendance(kickoff.event_id, vera.volunteer_id, "excused")

        events = self.repo.list_events_for_volunteer(vera.volunteer_id)
        self.assertEqual([e.name for e in events], ["Wrap Up", "Kickoff"])
        self.assertEqual([e.attendance_status for e in events], [None, "excused"])

    def test_attendance_for_volunteer_newest_event_first(self):
        vera = self._volunteer()
        project = self._project()
        early = self._event(project, "Early", when=LAST_MONTH)
        late = self._event(project, "Late", when=NEXT_WEEK)
        self.repo.mark_attendance(early.event_id, vera.volunteer_id)
        self.repo.mark_attendance(late.event_id, vera.volunteer_id)
        records = self.repo.list_attendance_for_volunteer(vera.volunteer_id)
        self.assertEqual([r.event_name for r in records], ["Late", "Early"])

    # Resources

    def test_resource_lifecycle(self):
        project = self._project()
        gloves = self.repo.create_resource(project.project_id, "Gloves", 40, type="gear")
        self.repo.create_resource(project.project_id, "Bags", 100)

        by_project = self.repo.list_resources(project.project_id)
        self.assertEqual([r.name for r in by_project], ["Bags", "Gloves"])
        self.assertEqual(by_project[0].project_name, "Beach Cleanup")

        updated = self.repo.update_resource(gloves.resource_id, {"quantity": 10})
        self.assertEqual(updated.quantity, 10)
        self.assertEqual(updated.type, "gear")

        self.repo.delete_resource(gloves.resource_id)
        self.assertIsNone(self.repo.get_resource(gloves.resource_id))
        with self.assertRaises(NotFoundError):
            self.repo.delete_resource(gloves.resource_id)
        with self.assertRaises(NotFoundError):
            self.repo.create_resource(999, "Nothing", 1)

    # Cascades

    def test_delete_project_cascades(self):
        vera = self._volunteer()
        project = self._project()
        event = self._event(project)
        self.repo.join_project(vera.volunteer_id, project.project_id)
        self.repo.mark_attendance(event.event_id, vera.volunteer_id)
        self.repo.create_resource(project.project_id, "Gloves", 40)

        self.repo.delete_project(project.project_id)

        self.assertIsNone(self.repo.get_project(project.project_id))
        self.assertIsNone(self.repo.get_event(event.event_id))
        self.assertEqual(self.repo.list_resources(), [])
        self.assertEqual(self.repo.list_projects_for_volunteer(vera.volunteer_id), [])
        self.assertEqual(self.repo.list_attendance_for_volunteer(vera.volunteer_id), [])
        with self.assertRaises(NotFoundError):
            self.repo.delete_project(project.project_id)

    def test_delete_volunteer_cascades_and_frees_seat(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=1)
        event = self._event(project)
        self.repo.join_project(ann.volunteer_id, project.project_id)
        self.repo.mark_attendance(event.event_id, ann.volunteer_id)

        self.repo.delete_volunteer(ann.volunteer_id)

        self.assertIsNone(self.repo.get_volunteer(ann.volunteer_id))
        self.assertEqual(self.repo.list_project_members(project.project_id), [])
        self.assertEqual(self.repo.list_attendance_for_event(event.event_id), [])
        self.repo.join_project(bob.volunteer_id, project.project_id)
        with self.assertRaises(NotFoundError):
            self.repo.delete_volunteer(ann.volunteer_id)

    def test_delete_event_removes_attendance(self):
        vera = self._volunteer()
        event = self._event(self._project())
        self.repo.mark_attendance(event.event_id, vera.volunteer_id)
        self.repo.delete_event(event.event_id)
        self.assertEqual(self.repo.list_attendance_for_volunteer(vera.volunteer_id), [])
        with self.assertRaises(NotFoundError):
            self.repo.delete_event(event.event_id)

    # Dashboards

    def test_admin_dashboard(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        beach = self._project("Beach Cleanup", status="active")
        park = self._project("Park Planting")
        first = self._event(beach, "Kickoff", when=LAST_MONTH)
        second = self._event(beach, "Cleanup Day", when=NEXT_WEEK)
        self.repo.join_project(ann.volunteer_id, beach.project_id)
        self.repo.join_project(bob.volunteer_id, beach.project_id)
        self.repo.join_project(bob.volunteer_id, park.project_id)
        self.repo.mark_attendance(first.event_id, ann.volunteer_id)
        self.repo.mark_attendance(first.event_id, bob.volunteer_id)
        self.repo.mark_attendance(second.event_id, ann.volunteer_id)
        self.repo.mark_attendance(second.event_id, bob.volunteer_id, "absent")

        stats = self.repo.admin_dashboard()
        self.assertEqual(stats.total_volunteers, 2)
        self.assertEqual(stats.active_volunteers, 2)
        self.assertEqual(stats.total_projects, 2)
        self.assertEqual(stats.active_projects, 1)
        self.assertEqual(stats.total_events, 2)
        self.assertEqual(stats.upcoming_events, 1)
        self.assertEqual(stats.project_status_breakdown["planned"], 1)
        self.assertEqual(
            [(p.project_name, p.volunteer_count) for p in stats.volunteers_per_project],
            [("Beach Cleanup", 2), ("Park Planting", 1)],
        )
        self.assertEqual(stats.total_attendances, 3)
        self.assertEqual(stats.average_attendance_per_event, 1.5)

    def test_admin_dashboard_empty(self):
        stats = self.repo.admin_dashboard()
        self.assertEqual(stats.total_volunteers, 0)
        self.assertEqual(stats.average_attendance_per_event, 0.0)
        self.assertEqual(stats.volunteers_per_project, [])

    def test_volunteer_dashboard(self):
        vera = self._volunteer()
        project = self._project()
        past = self._event(project, "Planning", when=LAST_MONTH)
        self._event(project, "Kickoff", when=NEXT_WEEK)
        self.repo.join_project(vera.volunteer_id, project.project_id)
        self.repo.mark_attendance(past.event_id, vera.volunteer_id)

        stats = self.repo.volunteer_dashboard(vera.volunteer_id)
        self.assertEqual(stats.projects_joined, 1)
        self.assertEqual(stats.events_attended, 1)
        self.assertEqual(stats.upcoming_events, 1)
        self.assertEqual([p.project_name for p in stats.projects], ["Beach Cleanup"])
        self.assertEqual(
            [(e.event_name, e.status) for e in stats.recent_events],
            [("Planning", "present")],
        )

    def test_project_stats(self):
        vera = self._volunteer()
        project = self._project()
        event = self._event(project)
        self.repo.join_project(vera.volunteer_id, project.project_id)
        self.repo.mark_attendance(event.event_id, vera.volunteer_id)
        self.repo.create_resource(project.project_id, "Gloves", 40)

        stats = self.repo.project_stats(project.project_id)
        self.assertEqual(
            (stats.volunteer_count, stats.event_count, stats.resource_count, stats.total_attendance),
            (1, 1, 1, 1),
        )
        with self.assertRaises(NotFoundError):
            self.repo.project_stats(999)

    def test_recent_activity(self):
        vera = self._volunteer()
        project = self._project()
        event = self._event(project)
        self.repo.join_project(vera.volunteer_id, project.project_id)
        self.repo.mark_attendance(event.event_id, vera.volunteer_id)

        descriptions = {a.description for a in self.repo.recent_activity()}
        self.assertEqual(
            descriptions,
            {
                "Vera joined project Beach Cleanup",
                "Vera attended Kickoff",
                "New event: Kickoff",
            },
        )
        self.assertEqual(len(self.repo.recent_activity(limit=2)), 2)


class SqlRepositoryTests(RepositoryContract, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL repository.
    """

    def make_repository(self):
        return SqlRepository("sqlite+pysqlite:///:memory:")


class SqlConcurrencyTests(unittest.TestCase):
    """
    Joins racing from separate connections against a file-backed SQLite database.
    """

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        path = Path(self.tmpdir.name) / "hub.db"
        self.repo = SqlRepository(f"sqlite+pysqlite:///{path}")

    def tearDown(self):
        self.repo.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_joins_take_the_last_seat_once(self):
        project = self.repo.create_project("Beach Cleanup", NEXT_MONTH, max_volunteers=1)
        volunteers = [
            self.repo.create_volunteer(name, f"{name.lower()}@example.com", "hash")
            for name in ("Ann", "Bob", "Cleo", "Dan")
        ]
        barrier = threading.Barrier(len(volunteers))
        outcomes = []
        lock = threading.Lock()

        def join(volunteer_id):
            barrier.wait()
            try:
                self.repo.join_project(volunteer_id, project.project_id)
                result = "joined"
            except ConflictError:
                result = "full"
            except Exception as exc:  # surfaced through the assertion below
                result = repr(exc)
            with lock:
                outcomes.append(result)

        threads = [
            threading.Thread(target=join, args=(v.volunteer_id,)) for v in volunteers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ["full", "full", "full", "joined"])
        self.assertEqual(len(self.repo.list_project_members(project.project_id)), 1)
        self.assertEqual(self.repo.get_project(project.project_id).volunteer_count, 1)


class MongoRepositoryTests(RepositoryContract, unittest.TestCase):
    def make_repository(self):
        return MongoRepository(mongomock.MongoClient()["volunteer_test"])

    def test_internal_fields_stay_out_of_records(self):
        project = self._project()
        payload = project.as_dict()
        self.assertNotIn("seats_taken", payload)
        self.assertNotIn("_id", payload)

    def test_seat_counter_initialised_for_legacy_projects(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=1)
        self.repo.db["volunteer_project"].insert_one(
            {
                "volunteer_id": ann.volunteer_id,
                "project_id": project.project_id,
                "join_date": NOW,
                "role": "participant",
            }
        )
        self.repo.db["projects"].update_one(
            {"project_id": project.project_id}, {"$unset": {"seats_taken": ""}}
        )
        with self.assertRaises(ConflictError):
            self.repo.join_project(bob.volunteer_id, project.project_id)

    def test_counters_seed_from_existing_ids(self):
        self.repo.db["volunteers"].insert_one(
            {
                "volunteer_id": 41,
                "name": "Imported",
                "email": "imported@example.com",
                "password_hash": "hash",
                "phone": None,
                "join_date": NOW,
                "status": "active",
                "role": "volunteer",
                "created_at": NOW,
            }
        )
        volunteer = self._volunteer()
        self.assertEqual(volunteer.volunteer_id, 42)

    def _assert_seats_match_members(self, project_id):
        project = self.repo.db["projects"].find_one({"project_id": project_id})
        members = self.repo.db["volunteer_project"].count_documents(
            {"project_id": project_id}
        )
        self.assertEqual(project["seats_taken"], members)
        return members

    def test_seat_counter_follows_memberships(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=2)
        other = self._project("Park Planting", max_volunteers=2)

        self.repo.join_project(ann.volunteer_id, project.project_id)
        self.repo.join_project(bob.volunteer_id, project.project_id)
        self.repo.join_project(ann.volunteer_id, other.project_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 2)

        with self.assertRaises(ConflictError):
            self.repo.join_project(ann.volunteer_id, project.project_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 2)

        self.repo.leave_project(bob.volunteer_id, project.project_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 1)

        self.repo.delete_volunteer(ann.volunteer_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 0)
        self.assertEqual(self._assert_seats_match_members(other.project_id), 0)

    def test_failed_membership_insert_releases_seat(self):
        ann = self._volunteer("Ann")
        bob = self._volunteer("Bob")
        project = self._project(max_volunteers=1)
        original_insert = mongomock.Collection.insert_one

        def flaky_insert(collection, document, *args, **kwargs):
            if collection.name == "volunteer_project":
                raise AutoReconnect("connection reset")
            return original_insert(collection, document, *args, **kwargs)

        with mock.patch.object(mongomock.Collection, "insert_one", flaky_insert):
            with self.assertRaises(AutoReconnect):
                self.repo.join_project(ann.volunteer_id, project.project_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 0)

        self.repo.join_project(bob.volunteer_id, project.project_id)
        self.assertEqual(self._assert_seats_match_members(project.project_id), 1)

    def test_recent_activity_keeps_ties_at_the_limit(self):
        project = self._project()
        for name in ("Alpha", "Bravo", "Charlie"):
            self._event(project, name)
        self.repo.db["events"].update_many({}, {"$set": {"created_at": NOW}})

        activity = self.repo.recent_activity(limit=2)
        self.assertEqual(
            [a.description for a in activity],
            ["New event: Charlie", "New event: Bravo"],
        )


def _mask_server_timestamps(value):
    if isinstance(value, dict):
        masked = {}
        for key, item in value.items():
            if key in SERVER_TIMESTAMPS and isinstance(item, datetime):
                masked[key] = "<timestamp>"
            else:
                masked[key] = _mask_server_timestamps(item)
        return masked
    if isinstance(value, list):
        return [_mask_server_timestamps(item) for item in value]
    return value


def _build_scenario(repo):
    org = repo.create_organization("Green Earth", address="1 Main St")
    ann = repo.create_volunteer("Ann", "ann@example.com", "hash", phone="555")
    bob = repo.create_volunteer("Bob", "BOB@example.com", "hash")
    beach = repo.create_project(
        "Beach Cleanup",
        NEXT_MONTH,
        max_volunteers=2,
        org_id=org.org_id,
        status="active",
        location="Pier 4",
    )
    park = repo.create_project("Park Planting", NEXT_MONTH, max_volunteers=10)
    repo.join_project(ann.volunteer_id, beach.project_id)
    repo.join_project(bob.volunteer_id, beach.project_id, role="driver")
    repo.join_project(ann.volunteer_id, park.project_id)
    kickoff = repo.create_event(
        beach.project_id, "Kickoff", LAST_MONTH, max_participants=10, location="Pier 4"
    )
    repo.create_event(beach.project_id, "Cleanup Day", NEXT_WEEK, max_participants=20)
    repo.mark_attendance(kickoff.event_id, ann.volunteer_id)
    repo.mark_attendance(kickoff.event_id, bob.volunteer_id, "absent", notes="sick")
    repo.create_resource(beach.project_id, "Gloves", 40, type="gear")
    repo.create_resource(park.project_id, "Saplings", 25)

    return {
        "organizations": repo.list_organizations(),
        "volunteers": repo.list_volunteers(),
        "active_volunteers": repo.list_volunteers("active"),
        "volunteer": repo.get_volunteer(bob.volunteer_id),
        "volunteer_counts": repo.count_volunteers_by_status(),
        "projects": repo.list_projects(volunteer_id=bob.volunteer_id),
        "project": repo.get_project(beach.project_id),
        "project_counts": repo.count_projects_by_status(),
        "mine": repo.list_projects_for_volunteer(ann.volunteer_id),
        "members": repo.list_project_members(beach.project_id),
        "events": repo.list_events(),
        "upcoming": repo.list_events(upcoming=True),
        "project_events": repo.list_events(project_id=beach.project_id),
        "volunteer_events": repo.list_events_for_volunteer(bob.volunteer_id),
        "event": repo.get_event(kickoff.event_id),
        "event_counts": repo.count_events(),
        "event_attendance": repo.list_attendance_for_event(kickoff.event_id),
        "volunteer_attendance": repo.list_attendance_for_volunteer(ann.volunteer_id),
        "resources": repo.list_resources(),
        "project_resources": repo.list_resources(beach.project_id),
        "admin": repo.admin_dashboard(),
        "dashboard": repo.volunteer_dashboard(ann.volunteer_id),
        "stats": repo.project_stats(beach.project_id),
        "activity": sorted(
            (a.activity_type, a.description) for a in repo.recent_activity(limit=50)
        ),
    }


class BackendParityTests(unittest.TestCase):
    """
    The same calls against both stores must produce identical payloads.
    """

    @classmethod
    def setUpClass(cls):
        sql = SqlRepository("sqlite+pysqlite:///:memory:")
        mongo = MongoRepository(mongomock.MongoClient()["volunteer_parity"])
        cls.sql_snapshot = _build_scenario(sql)
        cls.mongo_snapshot = _build_scenario(mongo)

    def test_payloads_match(self):
        self.assertEqual(set(self.sql_snapshot), set(self.mongo_snapshot))
        for key in self.sql_snapshot:
            with self.subTest(key=key):
                self.assertEqual(
                    _mask_server_timestamps(to_payload(self.sql_snapshot[key])),
                    _mask_server_timestamps(to_payload(self.mongo_snapshot[key])),
                )

    def test_server_timestamps_are_naive_datetimes(self):
        for snapshot in (self.sql_snapshot, self.mongo_snapshot):
            volunteer = snapshot["volunteer"]
            self.assertIsInstance(volunteer.created_at, datetime)
            self.assertIsNone(volunteer.created_at.tzinfo)
            self.assertEqual(volunteer.created_at.microsecond % 1000, 0)


if __name__ == "__main__":
    unittest.main()
