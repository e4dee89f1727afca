from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from siteguard.db import get_db
from siteguard.errors import ValidationError
from siteguard.schemas import DeploymentRead, RosterResponse, RosterRowRead
from siteguard.services.attendance import local_today
from siteguard.services.deployments import list_deployments
from siteguard.services.roster import get_roster
from siteguard.services.store import DeploymentStore

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@router.get("", response_model=list[DeploymentRead])
def get_deployments(
    person_id: int | None = Query(default=None, ge=1),
    site_id: int | None = Query(default=None, ge=1),
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
) -> list[DeploymentRead]:
    if date_from is None and date_to is None:
        date_from = date_to = local_today()
    if date_from is None or date_to is None:
        raise ValidationError("date_from and date_to must be provided together (YYYY-MM-DD).")

    deployments = list_deployments(
        DeploymentStore(db),
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
    )
    return [DeploymentRead.model_validate(item) for item in deployments]


@router.get("/roster", response_model=RosterResponse)
def get_deployment_roster(
    date_from: date,
    date_to: date,
    site_id: int | None = Query(default=None, ge=1),
    supervisor_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> RosterResponse:
    rows = get_roster(
        DeploymentStore(db),
        date_from=date_from,
        date_to=date_to,
        site_id=site_id,
        supervisor_id=supervisor_id,
    )
    return RosterResponse(
        date_from=date_from,
        date_to=date_to,
        rows=[RosterRowRead.model_validate(item) for item in rows],
    )
