from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, time, timedelta, timezone

from siteguard.errors import AnomalyWarning, OperationCancelledError, ValidationError
from siteguard.models import Assignment, Shift
from siteguard.services.store import DeploymentStore
from siteguard.settings import Settings, get_settings

logger = logging.getLogger("siteguard.deployments")

SENTINEL_START_TIME = time(0, 0)
SENTINEL_END_TIME = time(23, 59)

ANOMALY_OVERLAPPING_ASSIGNMENTS = "OVERLAPPING_ASSIGNMENTS"
ANOMALY_SHIFT_NOT_FOUND = "SHIFT_NOT_FOUND"


@dataclass(frozen=True, slots=True)
class Deployment:
    person_id: int
    site_id: int
    shift_id: int | None
    deployment_date: date
    start_time: time
    end_time: time
    source_assignment_id: int
    person_name: str | None = None
    site_name: str | None = None
    shift_name: str | None = None
    supervisor_id: int | None = None
    shift_resolved: bool = True

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time

    def covers_time(self, local_time: time) -> bool:
        if not self.crosses_midnight:
            return self.start_time <= local_time <= self.end_time
        return local_time >= self.start_time or local_time < self.end_time


@dataclass(slots=True)
class ExpansionResult:
    deployments: list[Deployment] = field(default_factory=list)
    anomalies: list[AnomalyWarning] = field(default_factory=list)


def iter_days(date_from: date, date_to: date) -> Iterable[date]:
    day = date_from
    while day <= date_to:
        yield day
        day += timedelta(days=1)


def validate_date_range(date_from: date, date_to: date, *, max_days: int) -> int:
    if date_from > date_to:
        raise ValidationError(
            "date_from must be less than or equal to date_to.",
            code="INVALID_DATE_RANGE",
        )
    day_count = (date_to - date_from).days + 1
    if day_count > max_days:
        raise ValidationError(
            f"Date range is limited to {max_days} days.",
            code="RANGE_TOO_LARGE",
            details={"day_count": day_count, "max_days": max_days},
        )
    return day_count


def _created_at_key(assignment: Assignment) -> float:
    created_at = assignment.created_at
    if created_at is None:
        return float("-inf")
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.timestamp()


def _precedence_key(assignment: Assignment) -> tuple[int, float, int]:
    return (
        assignment.start_date.toordinal(),
        _created_at_key(assignment),
        assignment.id or 0,
    )


def _log_anomalies(anomalies: Sequence[AnomalyWarning]) -> None:
    grouped: dict[tuple[str, int, tuple[int, ...]], list[date]] = defaultdict(list)
    for anomaly in anomalies:
        grouped[(anomaly.kind, anomaly.person_id, anomaly.assignment_ids)].append(anomaly.day)
    for (kind, person_id, assignment_ids), days in grouped.items():
        logger.warning(
            "deployment_anomaly",
            extra={
                "kind": kind,
                "person_id": person_id,
                "assignment_ids": list(assignment_ids),
                "first_day": min(days),
                "last_day": max(days),
                "day_count": len(days),
            },
        )


def expand_deployments(
    assignments: Iterable[Assignment],
    date_from: date,
    date_to: date,
    shift_lookup: Mapping[int, Shift],
    *,
    person_names: Mapping[int, str] | None = None,
    site_names: Mapping[int, str] | None = None,
    cancel_event: threading.Event | None = None,
) -> ExpansionResult:
    """Resolve assignment intervals into one deployment per (person, day).

    When a person has several assignments covering the same day the one with
    the later ``start_date`` wins, then the later creation order. Overlaps and
    unknown shifts are reported as anomalies and never fail the expansion.
    Output is sorted by person display name, person id, then date.
    """
    person_names = person_names or {}
    site_names = site_names or {}
    candidates = sorted(
        (item for item in assignments if item.end_date is None or item.end_date >= date_from),
        key=lambda item: (item.person_id, _precedence_key(item)),
    )

    result = ExpansionResult()
    for day in iter_days(date_from, date_to):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Deployment expansion cancelled.")

        covering: dict[int, list[Assignment]] = defaultdict(list)
        for assignment in candidates:
            if assignment.covers(day):
                covering[assignment.person_id].append(assignment)

        for person_id, person_assignments in covering.items():
            winner = max(person_assignments, key=_precedence_key)
            if len(person_assignments) > 1:
                result.anomalies.append(
                    AnomalyWarning(
                        kind=ANOMALY_OVERLAPPING_ASSIGNMENTS,
                        person_id=person_id,
                        day=day,
                        assignment_ids=tuple(sorted(item.id for item in person_assignments)),
                        details={"selected_assignment_id": winner.id},
                    )
                )

            shift = shift_lookup.get(winner.shift_id) if winner.shift_id is not None else None
            if shift is None:
                result.anomalies.append(
                    AnomalyWarning(
                        kind=ANOMALY_SHIFT_NOT_FOUND,
                        person_id=person_id,
                        day=day,
                        assignment_ids=(winner.id,),
                        details={"shift_id": winner.shift_id},
                    )
                )

            result.deployments.append(
                Deployment(
                    person_id=person_id,
                    site_id=winner.site_id,
                    shift_id=winner.shift_id,
                    deployment_date=day,
                    start_time=shift.start_time if shift is not None else SENTINEL_START_TIME,
                    end_time=shift.end_time if shift is not None else SENTINEL_END_TIME,
                    source_assignment_id=winner.id,
                    person_name=person_names.get(person_id),
                    site_name=site_names.get(winner.site_id),
                    shift_name=shift.name if shift is not None else None,
                    supervisor_id=winner.supervisor_id,
                    shift_resolved=shift is not None,
                )
            )

    result.deployments.sort(key=lambda item: (_display_key(item.person_id, person_names), item.deployment_date))
    if result.anomalies:
        _log_anomalies(result.anomalies)
    return result


def _display_key(person_id: int, person_names: Mapping[int, str]) -> tuple[str, int]:
    return ((person_names.get(person_id) or "").casefold(), person_id)


def _load_scoped_assignments(
    store: DeploymentStore,
    *,
    date_from: date,
    date_to: date,
    person_id: int | None,
    site_id: int | None,
    supervisor_id: int | None,
) -> list[Assignment]:
    scoped = store.find_overlapping(
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
        supervisor_id=supervisor_id,
    )
    if site_id is None and supervisor_id is None:
        return scoped

    # Overlap resolution must see every assignment of the people involved,
    # otherwise a site filter could surface a deployment that loses elsewhere.
    person_ids = sorted({item.person_id for item in scoped})
    if not person_ids:
        return []
    return store.find_overlapping(date_from=date_from, date_to=date_to, person_ids=person_ids)


def _enforce_cell_cap(day_count: int, person_count: int, settings: Settings) -> None:
    cells = day_count * max(person_count, 1)
    if cells > settings.max_roster_cells:
        raise ValidationError(
            f"Requested range covers {cells} person-days; the limit is {settings.max_roster_cells}.",
            code="RANGE_TOO_LARGE",
            details={"cells": cells, "max_cells": settings.max_roster_cells},
        )


@dataclass(slots=True)
class ScopedExpansion:
    result: ExpansionResult
    person_names: dict[int, str]
    scoped_person_ids: list[int]


def expand_scope(
    store: DeploymentStore,
    *,
    date_from: date,
    date_to: date,
    person_id: int | None = None,
    site_id: int | None = None,
    supervisor_id: int | None = None,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> ScopedExpansion:
    settings = settings or get_settings()
    day_count = validate_date_range(date_from, date_to, max_days=settings.max_range_days)

    assignments = _load_scoped_assignments(
        store,
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
        supervisor_id=supervisor_id,
    )
    scoped_person_ids = sorted(
        {
            item.person_id
            for item in assignments
            if (site_id is None or item.site_id == site_id)
            and (supervisor_id is None or item.supervisor_id == supervisor_id)
        }
    )
    _enforce_cell_cap(day_count, len(scoped_person_ids), settings)

    persons = store.get_persons(item.person_id for item in assignments)
    sites = store.get_sites(item.site_id for item in assignments)
    shifts = store.get_shifts(item.shift_id for item in assignments)
    person_names = {key: value.full_name for key, value in persons.items()}

    result = expand_deployments(
        assignments,
        date_from,
        date_to,
        shifts,
        person_names=person_names,
        site_names={key: value.name for key, value in sites.items()},
        cancel_event=cancel_event,
    )

    if site_id is not None or supervisor_id is not None:
        by_assignment = {item.id: item for item in assignments}
        result.deployments = [
            item
            for item in result.deployments
            if (site_id is None or item.site_id == site_id)
            and (
                supervisor_id is None
                or by_assignment[item.source_assignment_id].supervisor_id == supervisor_id
            )
        ]
    return ScopedExpansion(result=result, person_names=person_names, scoped_person_ids=scoped_person_ids)


def list_deployments(
    store: DeploymentStore,
    *,
    date_from: date,
    date_to: date,
    person_id: int | None = None,
    site_id: int | None = None,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> list[Deployment]:
    scoped = expand_scope(
        store,
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
        settings=settings,
        cancel_event=cancel_event,
    )
    return scoped.result.deployments


def resolve_person_deployment(store: DeploymentStore, *, person_id: int, day: date) -> Deployment | None:
    assignments = store.find_overlapping(date_from=day, date_to=day, person_id=person_id)
    if not assignments:
        return None
    shifts = store.get_shifts(item.shift_id for item in assignments)
    result = expand_deployments(assignments, day, day, shifts)
    for deployment in result.deployments:
        if deployment.person_id == person_id:
            return deployment
    return None
