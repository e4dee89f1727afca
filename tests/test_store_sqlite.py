from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from siteguard.db import Base
from siteguard.errors import AlreadyCheckedInError, NoOpenSessionError
from siteguard.models import Assignment, AttendanceRecord, AttendanceState, Person, Shift, Site
from siteguard.services.attendance import PersonDayLocks, check_in, check_out, list_attendance
from siteguard.services.deployments import resolve_person_deployment
from siteguard.services.store import DeploymentStore
from siteguard.settings import Settings


def _open_record(person_id: int, day: date) -> AttendanceRecord:
    return AttendanceRecord(
        person_id=person_id,
        site_id=10,
        attendance_date=day,
        state=AttendanceState.CHECKED_IN,
        check_in_time=datetime(2024, 2, 1, 4, 0, tzinfo=timezone.utc),
    )


class DeploymentStoreSqliteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)()
        self.db.add_all(
            [
                Person(id=1, full_name="Priya Nair", is_active=True),
                Person(id=2, full_name="Arjun Rao", is_active=True),
                Site(id=10, name="North Gate", latitude=28.6139, longitude=77.2090, allowed_radius_m=200),
                Site(id=20, name="Warehouse", latitude=28.5355, longitude=77.3910, allowed_radius_m=150),
                Shift(id=1, name="Morning", start_time=time(8, 0), end_time=time(16, 0)),
            ]
        )
        self.db.flush()
        self.db.add_all(
            [
                Assignment(
                    id=1,
                    person_id=1,
                    site_id=10,
                    shift_id=1,
                    start_date=date(2024, 1, 1),
                    end_date=date(2024, 3, 31),
                    is_active=True,
                ),
                Assignment(
                    id=2,
                    person_id=2,
                    site_id=20,
                    shift_id=1,
                    start_date=date(2024, 2, 10),
                    end_date=None,
                    is_active=True,
                ),
                Assignment(
                    id=3,
                    person_id=2,
                    site_id=10,
                    shift_id=1,
                    start_date=date(2023, 1, 1),
                    end_date=date(2023, 12, 31),
                    is_active=True,
                ),
                Assignment(
                    id=4,
                    person_id=1,
                    site_id=20,
                    shift_id=1,
                    start_date=date(2024, 2, 1),
                    end_date=date(2024, 2, 28),
                    is_active=False,
                ),
            ]
        )
        self.db.commit()
        self.store = DeploymentStore(self.db)
        self.settings = Settings(geofence_bypass_unconfigured_sites=True, allow_multiple_cycles_per_day=False)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_find_overlapping_respects_bounds_and_activity(self) -> None:
        rows = self.store.find_overlapping(date_from=date(2024, 2, 1), date_to=date(2024, 2, 15))
        self.assertEqual([item.id for item in rows], [1, 2])

        with_inactive = self.store.find_overlapping(
            date_from=date(2024, 2, 1),
            date_to=date(2024, 2, 15),
            include_inactive=True,
        )
        self.assertEqual(sorted(item.id for item in with_inactive), [1, 2, 4])

    def test_find_overlapping_filters(self) -> None:
        by_site = self.store.find_overlapping(date_from=date(2023, 6, 1), date_to=date(2024, 6, 1), site_id=10)
        self.assertEqual([item.id for item in by_site], [3, 1])

        by_people = self.store.find_overlapping(
            date_from=date(2023, 6, 1),
            date_to=date(2024, 6, 1),
            person_ids=[2],
        )
        self.assertEqual([item.id for item in by_people], [3, 2])

    def test_reference_lookups(self) -> None:
        self.assertEqual(set(self.store.get_persons([1, 2, 3])), {1, 2})
        self.assertEqual(set(self.store.get_sites([10])), {10})
        self.assertEqual(set(self.store.get_shifts([1, None, 42])), {1})
        self.assertEqual(self.store.get_shifts([None]), {})

    def test_resolve_person_deployment_from_database(self) -> None:
        deployment = resolve_person_deployment(self.store, person_id=1, day=date(2024, 2, 5))
        self.assertIsNotNone(deployment)
        self.assertEqual(deployment.site_id, 10)
        self.assertEqual(deployment.start_time, time(8, 0))
        self.assertIsNone(resolve_person_deployment(self.store, person_id=2, day=date(2024, 2, 5)))

    def test_open_session_index_rejects_second_open_record(self) -> None:
        first = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 2, 1)))
        self.assertIsNotNone(first)

        with self.assertLogs("siteguard.store", level="INFO"):
            second = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 2, 1)))
        self.assertIsNone(second)

        with self.assertLogs("siteguard.store", level="INFO"):
            other_day = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 2, 2)))
        self.assertIsNone(other_day)

        other_person = self.store.insert_attendance_if_no_open_session(_open_record(2, date(2024, 2, 1)))
        self.assertIsNotNone(other_person)

    def test_find_latest_open_attendance_spans_days(self) -> None:
        self.assertIsNone(self.store.find_latest_open_attendance(1))
        opened = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 1, 31)))

        found = self.store.find_latest_open_attendance(1)
        self.assertEqual(found.id, opened.id)
        self.assertIsNone(self.store.find_open_attendance(1, date(2024, 2, 1)))
        self.assertIsNone(self.store.find_latest_open_attendance(2))

    def test_closed_records_do_not_hold_the_index(self) -> None:
        first = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 2, 1)))
        first.state = AttendanceState.CHECKED_OUT
        self.store.update_attendance(first)

        again = self.store.insert_attendance_if_no_open_session(_open_record(1, date(2024, 2, 1)))
        self.assertIsNotNone(again)
        self.assertEqual(len(self.store.find_attendance_for_day(1, date(2024, 2, 1))), 2)

    def test_check_in_and_out_round_trip(self) -> None:
        locks = PersonDayLocks()
        opened = check_in(
            self.store,
            person_id=1,
            site_id=10,
            lat=28.6140,
            lon=77.2091,
            ts_utc=datetime(2024, 2, 1, 4, 0, tzinfo=timezone.utc),
            settings=self.settings,
            locks=locks,
        )
        self.assertIsNotNone(opened.id)
        self.assertEqual(opened.state, AttendanceState.CHECKED_IN)
        self.assertLess(opened.check_in_distance_m, 200)

        with self.assertRaises(AlreadyCheckedInError):
            check_in(
                self.store,
                person_id=1,
                site_id=10,
                lat=28.6140,
                lon=77.2091,
                ts_utc=datetime(2024, 2, 1, 5, 0, tzinfo=timezone.utc),
                settings=self.settings,
                locks=locks,
            )

        closed = check_out(
            self.store,
            person_id=1,
            lat=28.6139,
            lon=77.2090,
            ts_utc=datetime(2024, 2, 1, 11, 0, tzinfo=timezone.utc),
            settings=self.settings,
            locks=locks,
        )
        self.assertEqual(closed.id, opened.id)
        self.assertEqual(closed.state, AttendanceState.CHECKED_OUT)

        with self.assertRaises(NoOpenSessionError):
            check_out(
                self.store,
                person_id=1,
                lat=28.6139,
                lon=77.2090,
                ts_utc=datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc),
                settings=self.settings,
                locks=locks,
            )

        listed = list_attendance(
            self.store,
            date_from=date(2024, 2, 1),
            date_to=date(2024, 2, 1),
            person_id=1,
            settings=self.settings,
        )
        self.assertEqual([item.id for item in listed], [opened.id])


if __name__ == "__main__":
    unittest.main()
