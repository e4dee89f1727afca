from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from siteguard import audit
from siteguard.db import get_db
from siteguard.errors import ApiError, OutOfRangeError
from siteguard.models import AuditActorType
from siteguard.schemas import (
    AttendanceCheckinRequest,
    AttendanceCheckoutRequest,
    AttendanceRecordRead,
    AttendanceStatusResponse,
    ForceCheckoutRequest,
    MarkAbsentRequest,
)
from siteguard.services.attendance import (
    check_in,
    check_out,
    find_current_open_session,
    force_check_out,
    get_attendance_state,
    list_attendance,
    local_today,
    mark_absent,
)
from siteguard.services.store import DeploymentStore

router = APIRouter(tags=["attendance"])


@router.post(
    "/api/attendance/checkin",
    response_model=AttendanceRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def attendance_checkin(
    payload: AttendanceCheckinRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.actor = "person"
    request.state.person_id = payload.person_id
    store = DeploymentStore(db)
    try:
        record = check_in(
            store,
            person_id=payload.person_id,
            site_id=payload.site_id,
            lat=payload.lat,
            lon=payload.lon,
            ts_utc=payload.ts_utc,
            notes=payload.notes,
        )
    except OutOfRangeError as exc:
        audit.audit_attendance(
            db,
            request,
            actor_type=AuditActorType.PERSON,
            actor_id=str(payload.person_id),
            action=audit.ATTENDANCE_CHECKIN_OUT_OF_RANGE,
            success=False,
            details={"site_id": payload.site_id, **(exc.details or {})},
        )
        raise

    request.state.attendance_id = record.id
    audit.audit_attendance(
        db,
        request,
        actor_type=AuditActorType.PERSON,
        actor_id=str(payload.person_id),
        action=audit.ATTENDANCE_CHECKIN,
        success=True,
        record=record,
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/api/attendance/checkout", response_model=AttendanceRecordRead)
def attendance_checkout(
    payload: AttendanceCheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.actor = "person"
    request.state.person_id = payload.person_id
    store = DeploymentStore(db)
    try:
        record = check_out(
            store,
            person_id=payload.person_id,
            lat=payload.lat,
            lon=payload.lon,
            ts_utc=payload.ts_utc,
            notes=payload.notes,
        )
    except OutOfRangeError as exc:
        audit.audit_attendance(
            db,
            request,
            actor_type=AuditActorType.PERSON,
            actor_id=str(payload.person_id),
            action=audit.ATTENDANCE_CHECKOUT_OUT_OF_RANGE,
            success=False,
            details=dict(exc.details or {}),
        )
        raise

    request.state.attendance_id = record.id
    audit.audit_attendance(
        db,
        request,
        actor_type=AuditActorType.PERSON,
        actor_id=str(payload.person_id),
        action=audit.ATTENDANCE_CHECKOUT,
        success=True,
        record=record,
    )
    return AttendanceRecordRead.model_validate(record)


@router.get("/api/attendance", response_model=list[AttendanceRecordRead])
def attendance_list(
    date_from: date,
    date_to: date,
    person_id: int | None = Query(default=None, ge=1),
    site_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = list_attendance(
        DeploymentStore(db),
        date_from=date_from,
        date_to=date_to,
        person_id=person_id,
        site_id=site_id,
    )
    return [AttendanceRecordRead.model_validate(item) for item in records]


@router.get("/api/attendance/status", response_model=AttendanceStatusResponse)
def attendance_status(
    person_id: int = Query(ge=1),
    attendance_date: date | None = None,
    db: Session = Depends(get_db),
) -> AttendanceStatusResponse:
    store = DeploymentStore(db)
    day = attendance_date or local_today()
    state = get_attendance_state(store, person_id=person_id, day=day)
    open_record = find_current_open_session(store, person_id, day)
    return AttendanceStatusResponse(
        person_id=person_id,
        attendance_date=day,
        state=state,
        open_record=AttendanceRecordRead.model_validate(open_record) if open_record is not None else None,
    )


@router.post(
    "/api/admin/attendance/mark-absent",
    response_model=AttendanceRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def admin_mark_absent(
    payload: MarkAbsentRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.actor_id
    try:
        record = mark_absent(
            DeploymentStore(db),
            person_id=payload.person_id,
            day=payload.attendance_date,
            actor_id=payload.actor_id,
            remarks=payload.remarks,
        )
    except ApiError as exc:
        audit.audit_attendance(
            db,
            request,
            actor_type=AuditActorType.ADMIN,
            actor_id=payload.actor_id,
            action=audit.ATTENDANCE_MARK_ABSENT,
            success=False,
            details={"person_id": payload.person_id, "code": exc.code},
        )
        raise

    audit.audit_attendance(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.actor_id,
        action=audit.ATTENDANCE_MARK_ABSENT,
        success=True,
        record=record,
    )
    return AttendanceRecordRead.model_validate(record)


@router.post(
    "/api/admin/attendance/{record_id}/force-checkout",
    response_model=AttendanceRecordRead,
)
def admin_force_checkout(
    record_id: int,
    payload: ForceCheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.actor_id
    try:
        record = force_check_out(
            DeploymentStore(db),
            record_id=record_id,
            actor_id=payload.actor_id,
            ts_utc=payload.ts_utc,
            remarks=payload.remarks,
        )
    except ApiError as exc:
        audit.audit_attendance(
            db,
            request,
            actor_type=AuditActorType.ADMIN,
            actor_id=payload.actor_id,
            action=audit.ATTENDANCE_FORCE_CHECKOUT,
            success=False,
            details={"record_id": record_id, "code": exc.code},
        )
        raise

    audit.audit_attendance(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.actor_id,
        action=audit.ATTENDANCE_FORCE_CHECKOUT,
        success=True,
        record=record,
    )
    return AttendanceRecordRead.model_validate(record)
