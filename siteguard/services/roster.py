from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from siteguard.services.deployments import Deployment, expand_scope, iter_days
from siteguard.services.store import DeploymentStore
from siteguard.settings import Settings


@dataclass(frozen=True, slots=True)
class RosterRow:
    person_id: int
    person_name: str
    roster_date: date
    deployment: Deployment | None = None


def build_roster(
    deployments: Iterable[Deployment],
    date_from: date,
    date_to: date,
    *,
    persons: Mapping[int, str] | None = None,
) -> list[RosterRow]:
    """Project deployments onto a person x day grid.

    Every person in ``persons`` (plus anyone with a deployment) gets one row
    per day in range, holding that day's deployment or ``None``. Rows are
    ordered by display name, person id, then date.
    """
    if date_from > date_to:
        return []

    names: dict[int, str] = dict(persons or {})
    cells: dict[tuple[int, date], Deployment] = {}
    for deployment in deployments:
        if not date_from <= deployment.deployment_date <= date_to:
            continue
        names.setdefault(deployment.person_id, deployment.person_name or "")
        key = (deployment.person_id, deployment.deployment_date)
        current = cells.get(key)
        # Expansion yields one deployment per key; keep the choice stable if fed duplicates.
        if current is None or deployment.source_assignment_id > current.source_assignment_id:
            cells[key] = deployment

    ordered_people = sorted(names.items(), key=lambda item: (item[1].casefold(), item[0]))
    days = list(iter_days(date_from, date_to))

    rows: list[RosterRow] = []
    for person_id, person_name in ordered_people:
        for day in days:
            rows.append(
                RosterRow(
                    person_id=person_id,
                    person_name=person_name,
                    roster_date=day,
                    deployment=cells.get((person_id, day)),
                )
            )
    return rows


def get_roster(
    store: DeploymentStore,
    *,
    date_from: date,
    date_to: date,
    site_id: int | None = None,
    supervisor_id: int | None = None,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> list[RosterRow]:
    scoped = expand_scope(
        store,
        date_from=date_from,
        date_to=date_to,
        site_id=site_id,
        supervisor_id=supervisor_id,
        settings=settings,
        cancel_event=cancel_event,
    )
    persons = {
        person_id: scoped.person_names.get(person_id, "")
        for person_id in scoped.scoped_person_ids
    }
    return build_roster(scoped.result.deployments, date_from, date_to, persons=persons)
