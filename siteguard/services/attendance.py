from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from siteguard.errors import (
    AlreadyCheckedInError,
    ApiError,
    InvalidTransitionError,
    NoOpenSessionError,
    NotDeployedError,
    NotFoundError,
    OutOfRangeError,
)
from siteguard.models import AttendanceRecord, AttendanceState, Person, Site
from siteguard.services.deployments import Deployment, resolve_person_deployment, validate_date_range
from siteguard.services.geofence import GeofenceResult, evaluate_site_geofence, validate_coordinates
from siteguard.services.store import DeploymentStore
from siteguard.settings import Settings, get_attendance_timezone, get_settings

logger = logging.getLogger("siteguard.attendance")

_ALLOWED_TRANSITIONS: dict[AttendanceState, frozenset[AttendanceState]] = {
    AttendanceState.NO_RECORD: frozenset({AttendanceState.CHECKED_IN, AttendanceState.MARKED_ABSENT}),
    AttendanceState.CHECKED_IN: frozenset({AttendanceState.CHECKED_OUT}),
    AttendanceState.CHECKED_OUT: frozenset(),
    AttendanceState.MARKED_ABSENT: frozenset(),
}


@dataclass(slots=True)
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class PersonDayLocks:
    """Mutual exclusion per (person, day); entries are dropped once unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[tuple[int, date], _LockEntry] = {}

    @contextmanager
    def hold(self, person_id: int, day: date) -> Iterator[None]:
        key = (person_id, day)
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


_PERSON_DAY_LOCKS = PersonDayLocks()


def transition(record: AttendanceRecord, target: AttendanceState) -> None:
    current = record.state or AttendanceState.NO_RECORD
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current=current.value, target=target.value)
    record.state = target


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def local_day(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(get_attendance_timezone()).date()


def local_today() -> date:
    return local_day(datetime.now(timezone.utc))


def _require_active_person(store: DeploymentStore, person_id: int) -> Person:
    person = store.get_person(person_id)
    if person is None:
        raise NotFoundError("Person not found.", code="PERSON_NOT_FOUND")
    if not person.is_active:
        raise ApiError(
            status_code=403,
            code="PERSON_INACTIVE",
            message="Inactive person cannot perform attendance actions.",
        )
    return person


def _require_site(store: DeploymentStore, site_id: int | None) -> Site:
    site = store.get_site(site_id) if site_id is not None else None
    if site is None:
        raise NotFoundError("Site not found.", code="SITE_NOT_FOUND")
    return site


def _find_overnight_carryover(store: DeploymentStore, person_id: int, day: date) -> AttendanceRecord | None:
    previous = store.find_open_attendance(person_id, day - timedelta(days=1))
    if previous is not None and previous.shift_crosses_midnight:
        return previous
    return None


def find_current_open_session(store: DeploymentStore, person_id: int, day: date) -> AttendanceRecord | None:
    record = store.find_open_attendance(person_id, day)
    if record is not None:
        return record
    return _find_overnight_carryover(store, person_id, day)


def _resolve_deployment_for_checkin(
    store: DeploymentStore,
    *,
    person_id: int,
    site_id: int,
    day: date,
    ts_utc: datetime,
    settings: Settings,
) -> Deployment:
    deployment = resolve_person_deployment(store, person_id=person_id, day=day)
    if deployment is None or deployment.site_id != site_id:
        raise NotDeployedError(
            "No active deployment found for this site today. Contact your supervisor.",
            details={
                "date": day.isoformat(),
                "site_id": site_id,
                "deployed_site_id": deployment.site_id if deployment is not None else None,
            },
        )

    if settings.enforce_shift_window:
        local_time = ts_utc.astimezone(get_attendance_timezone()).time()
        if not deployment.covers_time(local_time):
            raise NotDeployedError(
                (
                    "Check-in is only allowed during the shift "
                    f"({deployment.start_time:%H:%M} - {deployment.end_time:%H:%M})."
                ),
                code="OUTSIDE_SHIFT_WINDOW",
                details={
                    "start_time": f"{deployment.start_time:%H:%M}",
                    "end_time": f"{deployment.end_time:%H:%M}",
                },
            )
    return deployment


def _ensure_no_open_session(store: DeploymentStore, *, person_id: int, day: date) -> None:
    record = store.find_latest_open_attendance(person_id)
    if record is None:
        return
    details = {
        "attendance_id": record.id,
        "attendance_date": record.attendance_date.isoformat(),
        "site_id": record.site_id,
    }
    carried_over = record.shift_crosses_midnight and record.attendance_date == day - timedelta(days=1)
    if record.attendance_date >= day or carried_over:
        raise AlreadyCheckedInError(details=details)
    raise AlreadyCheckedInError(
        "An attendance session from an earlier day is still open. Ask an administrator to close it.",
        code="STALE_OPEN_SESSION",
        details=details,
    )


def _ensure_day_not_closed(
    store: DeploymentStore,
    *,
    person_id: int,
    day: date,
    settings: Settings,
) -> None:
    records = store.find_attendance_for_day(person_id, day)
    if any(item.state == AttendanceState.MARKED_ABSENT for item in records):
        raise AlreadyCheckedInError(
            "Attendance for this day was closed by an administrator.",
            code="ATTENDANCE_CYCLE_COMPLETED",
        )
    if not settings.allow_multiple_cycles_per_day and any(
        item.state == AttendanceState.CHECKED_OUT for item in records
    ):
        raise AlreadyCheckedInError(
            "Attendance for this day is already completed.",
            code="ATTENDANCE_CYCLE_COMPLETED",
        )


def _check_geofence(site: Site, lat: float, lon: float, *, settings: Settings, action: str) -> GeofenceResult:
    result = evaluate_site_geofence(
        site,
        lat,
        lon,
        default_radius_m=settings.default_geofence_radius_m,
        bypass_unconfigured=settings.geofence_bypass_unconfigured_sites,
    )
    if not result.within_radius:
        raise OutOfRangeError(
            distance_m=result.distance_m,
            radius_m=result.radius_m if result.radius_m is not None else 0.0,
            action=action,
        )
    if result.bypassed:
        logger.warning(
            "geofence_bypassed_unconfigured_site",
            extra={"site_id": site.id, "action": action},
        )
    return result


def check_in(
    store: DeploymentStore,
    *,
    person_id: int,
    site_id: int,
    lat: float,
    lon: float,
    ts_utc: datetime | None = None,
    notes: str | None = None,
    settings: Settings | None = None,
    locks: PersonDayLocks | None = None,
) -> AttendanceRecord:
    settings = settings or get_settings()
    locks = locks or _PERSON_DAY_LOCKS
    validate_coordinates(lat, lon)
    ts = normalize_ts(ts_utc)
    day = local_day(ts)

    _require_active_person(store, person_id)
    site = _require_site(store, site_id)
    _ensure_no_open_session(store, person_id=person_id, day=day)
    deployment = _resolve_deployment_for_checkin(
        store,
        person_id=person_id,
        site_id=site_id,
        day=day,
        ts_utc=ts,
        settings=settings,
    )

    with locks.hold(person_id, day):
        _ensure_no_open_session(store, person_id=person_id, day=day)
        _ensure_day_not_closed(store, person_id=person_id, day=day, settings=settings)
        geofence = _check_geofence(site, lat, lon, settings=settings, action="check-in")

        record = AttendanceRecord(
            person_id=person_id,
            site_id=site.id,
            shift_id=deployment.shift_id,
            assignment_id=deployment.source_assignment_id,
            attendance_date=day,
            state=AttendanceState.NO_RECORD,
            shift_crosses_midnight=deployment.shift_resolved and deployment.crosses_midnight,
            check_in_time=ts,
            check_in_lat=lat,
            check_in_lon=lon,
            check_in_distance_m=round(geofence.distance_m, 2),
            geofence_bypassed=geofence.bypassed,
            remarks=notes,
        )
        transition(record, AttendanceState.CHECKED_IN)
        saved = store.insert_attendance_if_no_open_session(record)
        if saved is None:
            raise AlreadyCheckedInError()

    logger.info(
        "attendance_checked_in",
        extra={
            "person_id": person_id,
            "site_id": site.id,
            "attendance_id": saved.id,
            "attendance_date": day,
            "distance_m": saved.check_in_distance_m,
            "geofence_bypassed": geofence.bypassed,
        },
    )
    return saved


def check_out(
    store: DeploymentStore,
    *,
    person_id: int,
    lat: float,
    lon: float,
    ts_utc: datetime | None = None,
    notes: str | None = None,
    settings: Settings | None = None,
    locks: PersonDayLocks | None = None,
) -> AttendanceRecord:
    settings = settings or get_settings()
    locks = locks or _PERSON_DAY_LOCKS
    validate_coordinates(lat, lon)
    ts = normalize_ts(ts_utc)
    day = local_day(ts)

    _require_active_person(store, person_id)
    candidate = find_current_open_session(store, person_id, day)
    if candidate is None:
        raise NoOpenSessionError()

    with locks.hold(person_id, candidate.attendance_date):
        record = store.find_open_attendance(person_id, candidate.attendance_date)
        if record is None:
            raise NoOpenSessionError()

        # The geofence is the one where the session was opened, never a caller-supplied site.
        site = _require_site(store, record.site_id)
        geofence = _check_geofence(site, lat, lon, settings=settings, action="check-out")

        transition(record, AttendanceState.CHECKED_OUT)
        record.check_out_time = ts
        record.check_out_lat = lat
        record.check_out_lon = lon
        record.check_out_distance_m = round(geofence.distance_m, 2)
        record.geofence_bypassed = record.geofence_bypassed or geofence.bypassed
        if notes:
            record.remarks = f"{record.remarks or ''} [Check-out: {notes}]".strip()
        saved = store.update_attendance(record)

    logger.info(
        "attendance_checked_out",
        extra={
            "person_id": person_id,
            "site_id": saved.site_id,
            "attendance_id": saved.id,
            "attendance_date": saved.attendance_date,
            "distance_m": saved.check_out_distance_m,
        },
    )
    return saved


def mark_absent(
    store: DeploymentStore,
    *,
    person_id: int,
    day: date,
    actor_id: str,
    remarks: str | None = None,
    locks: PersonDayLocks | None = None,
) -> AttendanceRecord:
    locks = locks or _PERSON_DAY_LOCKS
    if store.get_person(person_id) is None:
        raise NotFoundError("Person not found.", code="PERSON_NOT_FOUND")
    deployment = resolve_person_deployment(store, person_id=person_id, day=day)

    with locks.hold(person_id, day):
        existing = store.find_attendance_for_day(person_id, day)
        if existing:
            raise InvalidTransitionError(
                current=existing[-1].state.value,
                target=AttendanceState.MARKED_ABSENT.value,
            )
        record = AttendanceRecord(
            person_id=person_id,
            site_id=deployment.site_id if deployment is not None else None,
            shift_id=deployment.shift_id if deployment is not None else None,
            assignment_id=deployment.source_assignment_id if deployment is not None else None,
            attendance_date=day,
            state=AttendanceState.NO_RECORD,
            remarks=remarks,
            marked_by=actor_id,
        )
        transition(record, AttendanceState.MARKED_ABSENT)
        saved = store.insert_attendance(record)

    logger.info(
        "attendance_marked_absent",
        extra={"person_id": person_id, "attendance_date": day, "actor_id": actor_id},
    )
    return saved


def force_check_out(
    store: DeploymentStore,
    *,
    record_id: int,
    actor_id: str,
    ts_utc: datetime | None = None,
    remarks: str | None = None,
    locks: PersonDayLocks | None = None,
) -> AttendanceRecord:
    locks = locks or _PERSON_DAY_LOCKS
    record = store.get_attendance(record_id)
    if record is None:
        raise NotFoundError("Attendance record not found.", code="ATTENDANCE_NOT_FOUND")

    with locks.hold(record.person_id, record.attendance_date):
        record = store.get_attendance(record_id)
        if record is None:
            raise NotFoundError("Attendance record not found.", code="ATTENDANCE_NOT_FOUND")
        transition(record, AttendanceState.CHECKED_OUT)
        record.check_out_time = normalize_ts(ts_utc)
        record.marked_by = actor_id
        if remarks:
            record.remarks = f"{record.remarks or ''} [Force check-out: {remarks}]".strip()
        saved = store.update_attendance(record)

    logger.info(
        "attendance_force_checked_out",
        extra={"attendance_id": saved.id, "person_id": saved.person_id, "actor_id": actor_id},
    )
    return saved


def get_attendance_state(store: DeploymentStore, *, person_id: int, day: date) -> AttendanceState:
    if store.get_person(person_id) is None:
        raise NotFoundError("Person not found.", code="PERSON_NOT_FOUND")
    records = store.find_attendance_for_day(person_id, day)
    if not records:
        carryover = _find_overnight_carryover(store, person_id, day)
        return carryover.state if carryover is not None else AttendanceState.NO_RECORD
    if any(item.state == AttendanceState.CHECKED_IN for item in records):
        return AttendanceState.CHECKED_IN
    return records[-1].state


def list_attendance(
    store: DeploymentStore,
    *,
    date_from: date,
    date_to: date,
    person_id: int | None = None,
    site_id: int | None = None,
    settings: Settings | None = None,
) -> list[AttendanceRecord]:
    settings = settings or get_settings()
    validate_date_range(date_from, date_to, max_days=settings.max_range_days)
    return store.list_attendance(
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
    )
