from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siteguard.models import AttendanceRecord, AuditActorType, AuditLog

logger = logging.getLogger("siteguard.audit")

ATTENDANCE_CHECKIN = "ATTENDANCE_CHECKIN"
ATTENDANCE_CHECKIN_OUT_OF_RANGE = "ATTENDANCE_CHECKIN_OUT_OF_RANGE"
ATTENDANCE_CHECKOUT = "ATTENDANCE_CHECKOUT"
ATTENDANCE_CHECKOUT_OUT_OF_RANGE = "ATTENDANCE_CHECKOUT_OUT_OF_RANGE"
ATTENDANCE_MARK_ABSENT = "ATTENDANCE_MARK_ABSENT"
ATTENDANCE_FORCE_CHECKOUT = "ATTENDANCE_FORCE_CHECKOUT"


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


def attendance_details(record: AttendanceRecord) -> dict[str, Any]:
    return {
        "person_id": record.person_id,
        "site_id": record.site_id,
        "attendance_date": record.attendance_date.isoformat(),
        "state": record.state.value,
        "geofence_bypassed": record.geofence_bypassed,
    }


def audit_attendance(
    db: Session,
    request: Request,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    record: AttendanceRecord | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Persist one audit row for an attendance action.

    Details default to a snapshot of ``record``. A failed write is logged and
    swallowed so the audited action itself is never undone by it.
    """
    if details is None:
        details = attendance_details(record) if record is not None else {}
    request_id = getattr(request.state, "request_id", None)

    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type="attendance_record",
        entity_id=str(record.id) if record is not None else None,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        success=success,
        details=details,
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": actor_id},
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_id": entry.entity_id,
            "success": success,
            "details": details,
        },
    )
    return entry
