from __future__ import annotations

import threading
import unittest
from datetime import date, datetime, time, timezone

from siteguard.errors import (
    AlreadyCheckedInError,
    ApiError,
    InvalidTransitionError,
    NoOpenSessionError,
    NotDeployedError,
    OutOfRangeError,
)
from siteguard.models import Assignment, AttendanceRecord, AttendanceState, Person, Shift, Site
from siteguard.services.attendance import (
    PersonDayLocks,
    check_in,
    check_out,
    force_check_out,
    get_attendance_state,
    mark_absent,
    transition,
)
from siteguard.settings import Settings

# 09:30 in Asia/Kolkata on 2024-02-01.
MORNING_TS = datetime(2024, 2, 1, 4, 0, tzinfo=timezone.utc)
SITE_ONE = (28.6139, 77.2090)
SITE_TWO = (28.5355, 77.3910)


class _InMemoryStore:
    """Minimal attendance store; the insert enforces one open session per person."""

    def __init__(self, *, persons: list[Person], sites: list[Site], shifts: list[Shift], assignments: list[Assignment]):
        self.persons = {item.id: item for item in persons}
        self.sites = {item.id: item for item in sites}
        self.shifts = {item.id: item for item in shifts}
        self.assignments = assignments
        self.records: list[AttendanceRecord] = []
        self._write_lock = threading.Lock()
        self._next_id = 1

    def find_overlapping(self, *, date_from, date_to, person_id=None, person_ids=None, site_id=None, supervisor_id=None, include_inactive=False):  # type: ignore[no-untyped-def]
        return [
            item
            for item in self.assignments
            if item.start_date <= date_to
            and (item.end_date is None or item.end_date >= date_from)
            and (person_id is None or item.person_id == person_id)
            and (include_inactive or item.is_active)
        ]

    def get_person(self, person_id: int) -> Person | None:
        return self.persons.get(person_id)

    def get_site(self, site_id: int) -> Site | None:
        return self.sites.get(site_id)

    def get_shifts(self, ids):  # type: ignore[no-untyped-def]
        return {key: self.shifts[key] for key in set(ids) if key is not None and key in self.shifts}

    def get_attendance(self, record_id: int) -> AttendanceRecord | None:
        return next((item for item in self.records if item.id == record_id), None)

    def find_open_attendance(self, person_id: int, attendance_date: date) -> AttendanceRecord | None:
        matches = [
            item
            for item in self.records
            if item.person_id == person_id
            and item.attendance_date == attendance_date
            and item.state == AttendanceState.CHECKED_IN
        ]
        return matches[-1] if matches else None

    def find_latest_open_attendance(self, person_id: int) -> AttendanceRecord | None:
        matches = [
            item
            for item in self.records
            if item.person_id == person_id and item.state == AttendanceState.CHECKED_IN
        ]
        return max(matches, key=lambda item: (item.attendance_date, item.id), default=None)

    def find_attendance_for_day(self, person_id: int, attendance_date: date) -> list[AttendanceRecord]:
        return [
            item
            for item in self.records
            if item.person_id == person_id and item.attendance_date == attendance_date
        ]

    def _save(self, record: AttendanceRecord) -> AttendanceRecord:
        record.id = self._next_id
        self._next_id += 1
        self.records.append(record)
        return record

    def insert_attendance_if_no_open_session(self, record: AttendanceRecord) -> AttendanceRecord | None:
        with self._write_lock:
            if self.find_latest_open_attendance(record.person_id) is not None:
                return None
            return self._save(record)

    def insert_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        with self._write_lock:
            return self._save(record)

    def update_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        return record


def _build_store(*, shift: Shift | None = None, person_active: bool = True) -> _InMemoryStore:
    shift = shift or Shift(id=1, name="Morning", start_time=time(8, 0), end_time=time(16, 0))
    return _InMemoryStore(
        persons=[Person(id=1, full_name="Priya Nair", is_active=person_active)],
        sites=[
            Site(id=10, name="North Gate", latitude=SITE_ONE[0], longitude=SITE_ONE[1], allowed_radius_m=200),
            Site(id=20, name="Warehouse", latitude=SITE_TWO[0], longitude=SITE_TWO[1], allowed_radius_m=200),
            Site(id=30, name="Unmapped Yard", latitude=None, longitude=None, allowed_radius_m=None),
        ],
        shifts=[shift],
        assignments=[
            Assignment(
                id=1,
                person_id=1,
                site_id=10,
                shift_id=shift.id,
                start_date=date(2024, 1, 1),
                end_date=None,
                is_active=True,
                created_at=datetime(2023, 12, 1, tzinfo=timezone.utc),
            )
        ],
    )


def _settings(**overrides) -> Settings:  # type: ignore[no-untyped-def]
    values = {
        "attendance_timezone": "Asia/Kolkata",
        "default_geofence_radius_m": 100,
        "geofence_bypass_unconfigured_sites": True,
        "allow_multiple_cycles_per_day": False,
        "enforce_shift_window": False,
    }
    values.update(overrides)
    return Settings(**values)


class TransitionTableTests(unittest.TestCase):
    def test_allowed_transitions(self) -> None:
        record = AttendanceRecord(state=AttendanceState.NO_RECORD)
        transition(record, AttendanceState.CHECKED_IN)
        transition(record, AttendanceState.CHECKED_OUT)
        self.assertEqual(record.state, AttendanceState.CHECKED_OUT)

    def test_rejected_transitions(self) -> None:
        cases = [
            (AttendanceState.NO_RECORD, AttendanceState.CHECKED_OUT),
            (AttendanceState.CHECKED_IN, AttendanceState.CHECKED_IN),
            (AttendanceState.CHECKED_OUT, AttendanceState.CHECKED_IN),
            (AttendanceState.MARKED_ABSENT, AttendanceState.CHECKED_IN),
            (AttendanceState.CHECKED_IN, AttendanceState.MARKED_ABSENT),
        ]
        for current, target in cases:
            with self.subTest(current=current, target=target):
                record = AttendanceRecord(state=current)
                with self.assertRaises(InvalidTransitionError) as exc:
                    transition(record, target)
                self.assertEqual(exc.exception.status_code, 409)
                self.assertEqual(record.state, current)


class CheckInTests(unittest.TestCase):
    def test_check_in_creates_open_session(self) -> None:
        store = _build_store()
        record = check_in(
            store,  # type: ignore[arg-type]
            person_id=1,
            site_id=10,
            lat=SITE_ONE[0],
            lon=SITE_ONE[1],
            ts_utc=MORNING_TS,
            settings=_settings(),
            locks=PersonDayLocks(),
        )
        self.assertEqual(record.state, AttendanceState.CHECKED_IN)
        self.assertEqual(record.attendance_date, date(2024, 2, 1))
        self.assertEqual(record.assignment_id, 1)
        self.assertEqual(record.check_in_distance_m, 0.0)
        self.assertFalse(record.shift_crosses_midnight)
        self.assertFalse(record.geofence_bypassed)

    def test_second_check_in_before_checkout_is_rejected(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]

        with self.assertRaises(AlreadyCheckedInError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(len(store.records), 1)

    def test_open_session_blocks_check_in_at_another_site(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        opened = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]

        with self.assertRaises(AlreadyCheckedInError) as exc:
            check_in(store, person_id=1, site_id=20, lat=SITE_TWO[0], lon=SITE_TWO[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(exc.exception.details["attendance_id"], opened.id)
        self.assertEqual(exc.exception.details["site_id"], 10)
        self.assertEqual(len(store.records), 1)

    def test_stale_open_session_from_earlier_day_blocks_check_in(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        stale = check_in(
            store,  # type: ignore[arg-type]
            person_id=1,
            site_id=10,
            lat=SITE_ONE[0],
            lon=SITE_ONE[1],
            ts_utc=datetime(2024, 1, 31, 4, 0, tzinfo=timezone.utc),
            settings=_settings(),
            locks=locks,
        )

        with self.assertRaises(AlreadyCheckedInError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "STALE_OPEN_SESSION")
        self.assertEqual(exc.exception.details["attendance_date"], "2024-01-31")
        open_records = [item for item in store.records if item.state == AttendanceState.CHECKED_IN]
        self.assertEqual([item.id for item in open_records], [stale.id])

        with self.assertRaises(NoOpenSessionError):
            check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]

        force_check_out(store, record_id=stale.id, actor_id="admin-7", locks=locks)  # type: ignore[arg-type]
        fresh = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(fresh.attendance_date, date(2024, 2, 1))
        self.assertEqual(fresh.state, AttendanceState.CHECKED_IN)

    def test_check_in_far_from_site_is_out_of_range(self) -> None:
        store = _build_store()
        with self.assertRaises(OutOfRangeError) as exc:
            check_in(
                store,  # type: ignore[arg-type]
                person_id=1,
                site_id=10,
                lat=28.6184,
                lon=77.2090,
                ts_utc=MORNING_TS,
                settings=_settings(),
                locks=PersonDayLocks(),
            )
        self.assertAlmostEqual(exc.exception.distance_m, 500.4, delta=2.0)
        self.assertEqual(exc.exception.radius_m, 200)
        self.assertEqual(store.records, [])

    def test_check_in_at_undeployed_site(self) -> None:
        store = _build_store()
        with self.assertRaises(NotDeployedError) as exc:
            check_in(store, person_id=1, site_id=20, lat=SITE_TWO[0], lon=SITE_TWO[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "NOT_DEPLOYED")
        self.assertEqual(exc.exception.details["deployed_site_id"], 10)

    def test_check_in_before_assignment_starts(self) -> None:
        store = _build_store()
        with self.assertRaises(NotDeployedError):
            check_in(
                store,  # type: ignore[arg-type]
                person_id=1,
                site_id=10,
                lat=SITE_ONE[0],
                lon=SITE_ONE[1],
                ts_utc=datetime(2023, 12, 15, 4, 0, tzinfo=timezone.utc),
                settings=_settings(),
                locks=PersonDayLocks(),
            )

    def test_inactive_person_is_forbidden(self) -> None:
        store = _build_store(person_active=False)
        with self.assertRaises(ApiError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "PERSON_INACTIVE")

    def test_unknown_person(self) -> None:
        store = _build_store()
        with self.assertRaises(ApiError) as exc:
            check_in(store, person_id=99, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "PERSON_NOT_FOUND")

    def test_shift_window_enforced_when_enabled(self) -> None:
        store = _build_store()
        evening = datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)  # 19:30 local
        with self.assertRaises(NotDeployedError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=evening, settings=_settings(enforce_shift_window=True), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "OUTSIDE_SHIFT_WINDOW")

    def test_unconfigured_site_is_bypassed_and_flagged(self) -> None:
        store = _build_store()
        store.assignments[0].site_id = 30
        with self.assertLogs("siteguard.attendance", level="WARNING"):
            record = check_in(store, person_id=1, site_id=30, lat=10.0, lon=10.0, ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertTrue(record.geofence_bypassed)
        self.assertEqual(record.check_in_distance_m, 0.0)

    def test_completed_cycle_blocks_new_check_in(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc), settings=_settings(), locks=locks)  # type: ignore[arg-type]

        with self.assertRaises(AlreadyCheckedInError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=datetime(2024, 2, 1, 11, 0, tzinfo=timezone.utc), settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "ATTENDANCE_CYCLE_COMPLETED")

    def test_multiple_cycles_allowed_when_configured(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        settings = _settings(allow_multiple_cycles_per_day=True)
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=settings, locks=locks)  # type: ignore[arg-type]
        check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=datetime(2024, 2, 1, 6, 0, tzinfo=timezone.utc), settings=settings, locks=locks)  # type: ignore[arg-type]
        second = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=datetime(2024, 2, 1, 7, 0, tzinfo=timezone.utc), settings=settings, locks=locks)  # type: ignore[arg-type]
        self.assertEqual(second.state, AttendanceState.CHECKED_IN)
        self.assertEqual(len(store.records), 2)

    def test_storage_conflict_maps_to_already_checked_in(self) -> None:
        store = _build_store()
        store.find_attendance_for_day = lambda person_id, attendance_date: []  # type: ignore[method-assign]
        store.insert_attendance_if_no_open_session = lambda record: None  # type: ignore[method-assign]
        with self.assertRaises(AlreadyCheckedInError):
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]


class ConcurrentCheckInTests(unittest.TestCase):
    def test_concurrent_check_ins_yield_single_session(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        settings = _settings()
        worker_count = 8
        barrier = threading.Barrier(worker_count)
        successes: list[AttendanceRecord] = []
        failures: list[Exception] = []
        results_lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            try:
                record = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=settings, locks=locks)  # type: ignore[arg-type]
            except AlreadyCheckedInError as exc:
                with results_lock:
                    failures.append(exc)
                return
            with results_lock:
                successes.append(record)

        threads = [threading.Thread(target=worker) for _ in range(worker_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), worker_count - 1)
        self.assertEqual(len(store.records), 1)
        self.assertEqual(len(locks), 0)


class ConcurrentCheckOutTests(unittest.TestCase):
    def test_concurrent_check_outs_close_session_once(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        settings = _settings()
        opened = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=settings, locks=locks)  # type: ignore[arg-type]
        checkout_ts = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)
        worker_count = 8
        barrier = threading.Barrier(worker_count)
        successes: list[AttendanceRecord] = []
        failures: list[Exception] = []
        results_lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            try:
                record = check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=checkout_ts, settings=settings, locks=locks)  # type: ignore[arg-type]
            except NoOpenSessionError as exc:
                with results_lock:
                    failures.append(exc)
                return
            with results_lock:
                successes.append(record)

        threads = [threading.Thread(target=worker) for _ in range(worker_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(len(successes), 1)
        self.assertEqual(successes[0].id, opened.id)
        self.assertEqual(len(failures), worker_count - 1)
        self.assertEqual(store.records[0].state, AttendanceState.CHECKED_OUT)
        self.assertEqual(store.records[0].check_out_time, checkout_ts)
        self.assertEqual(len(locks), 0)


class CheckOutTests(unittest.TestCase):
    def test_check_out_without_session(self) -> None:
        store = _build_store()
        with self.assertRaises(NoOpenSessionError) as exc:
            check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "NO_OPEN_SESSION")
        self.assertEqual(exc.exception.status_code, 409)

    def test_check_out_closes_session(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, notes="gate 2", settings=_settings(), locks=locks)  # type: ignore[arg-type]
        record = check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=datetime(2024, 2, 1, 10, 30, tzinfo=timezone.utc), notes="handover done", settings=_settings(), locks=locks)  # type: ignore[arg-type]

        self.assertEqual(record.state, AttendanceState.CHECKED_OUT)
        self.assertEqual(record.check_out_time, datetime(2024, 2, 1, 10, 30, tzinfo=timezone.utc))
        self.assertEqual(record.remarks, "gate 2 [Check-out: handover done]")
        self.assertEqual(get_attendance_state(store, person_id=1, day=date(2024, 2, 1)), AttendanceState.CHECKED_OUT)  # type: ignore[arg-type]

    def test_check_out_uses_session_site_geofence(self) -> None:
        store = _build_store()
        locks = PersonDayLocks()
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]

        with self.assertRaises(OutOfRangeError):
            check_out(store, person_id=1, lat=SITE_TWO[0], lon=SITE_TWO[1], ts_utc=MORNING_TS, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(store.records[0].state, AttendanceState.CHECKED_IN)

    def test_overnight_session_checked_out_next_day(self) -> None:
        night = Shift(id=2, name="Night", start_time=time(22, 0), end_time=time(6, 0))
        store = _build_store(shift=night)
        locks = PersonDayLocks()
        opened = check_in(
            store,  # type: ignore[arg-type]
            person_id=1,
            site_id=10,
            lat=SITE_ONE[0],
            lon=SITE_ONE[1],
            ts_utc=datetime(2024, 2, 1, 17, 0, tzinfo=timezone.utc),  # 22:30 local
            settings=_settings(),
            locks=locks,
        )
        self.assertTrue(opened.shift_crosses_midnight)

        next_morning = datetime(2024, 2, 2, 0, 0, tzinfo=timezone.utc)  # 05:30 local
        self.assertEqual(get_attendance_state(store, person_id=1, day=date(2024, 2, 2)), AttendanceState.CHECKED_IN)  # type: ignore[arg-type]
        with self.assertRaises(AlreadyCheckedInError):
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=next_morning, settings=_settings(), locks=locks)  # type: ignore[arg-type]

        closed = check_out(store, person_id=1, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=next_morning, settings=_settings(), locks=locks)  # type: ignore[arg-type]
        self.assertEqual(closed.id, opened.id)
        self.assertEqual(closed.attendance_date, date(2024, 2, 1))
        self.assertEqual(closed.state, AttendanceState.CHECKED_OUT)


class AdminActionTests(unittest.TestCase):
    def test_mark_absent_closes_the_day(self) -> None:
        store = _build_store()
        record = mark_absent(store, person_id=1, day=date(2024, 2, 1), actor_id="admin-7", remarks="sick leave", locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(record.state, AttendanceState.MARKED_ABSENT)
        self.assertEqual(record.site_id, 10)
        self.assertEqual(record.marked_by, "admin-7")

        with self.assertRaises(AlreadyCheckedInError) as exc:
            check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(allow_multiple_cycles_per_day=True), locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "ATTENDANCE_CYCLE_COMPLETED")

    def test_mark_absent_rejected_when_record_exists(self) -> None:
        store = _build_store()
        check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        with self.assertRaises(InvalidTransitionError) as exc:
            mark_absent(store, person_id=1, day=date(2024, 2, 1), actor_id="admin-7", locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.details, {"current": "CHECKED_IN", "target": "MARKED_ABSENT"})

    def test_force_check_out(self) -> None:
        store = _build_store()
        opened = check_in(store, person_id=1, site_id=10, lat=SITE_ONE[0], lon=SITE_ONE[1], ts_utc=MORNING_TS, settings=_settings(), locks=PersonDayLocks())  # type: ignore[arg-type]
        closed = force_check_out(
            store,  # type: ignore[arg-type]
            record_id=opened.id,
            actor_id="admin-7",
            ts_utc=datetime(2024, 2, 1, 12, 0),
            remarks="forgot to check out",
            locks=PersonDayLocks(),
        )
        self.assertEqual(closed.state, AttendanceState.CHECKED_OUT)
        self.assertEqual(closed.check_out_time, datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(closed.marked_by, "admin-7")
        self.assertIn("[Force check-out: forgot to check out]", closed.remarks)

        with self.assertRaises(InvalidTransitionError):
            force_check_out(store, record_id=opened.id, actor_id="admin-7", locks=PersonDayLocks())  # type: ignore[arg-type]

    def test_force_check_out_unknown_record(self) -> None:
        store = _build_store()
        with self.assertRaises(ApiError) as exc:
            force_check_out(store, record_id=404, actor_id="admin-7", locks=PersonDayLocks())  # type: ignore[arg-type]
        self.assertEqual(exc.exception.code, "ATTENDANCE_NOT_FOUND")


class PersonDayLockTests(unittest.TestCase):
    def test_entries_released_after_use(self) -> None:
        locks = PersonDayLocks()
        with locks.hold(1, date(2024, 2, 1)):
            self.assertEqual(len(locks), 1)
            with locks.hold(2, date(2024, 2, 1)):
                self.assertEqual(len(locks), 2)
        self.assertEqual(len(locks), 0)


if __name__ == "__main__":
    unittest.main()
