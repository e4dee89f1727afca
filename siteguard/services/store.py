from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from siteguard.models import Assignment, AttendanceRecord, AttendanceState, Person, Shift, Site

logger = logging.getLogger("siteguard.store")


class DeploymentStore:
    """SQLAlchemy access to assignments, reference data and attendance rows.

    Holds no business rules. Reads return snapshots; attendance writes commit
    immediately because every state transition is atomic over one record.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_overlapping(
        self,
        *,
        date_from: date,
        date_to: date,
        person_id: int | None = None,
        person_ids: Iterable[int] | None = None,
        site_id: int | None = None,
        supervisor_id: int | None = None,
        include_inactive: bool = False,
    ) -> list[Assignment]:
        stmt = (
            select(Assignment)
            .where(
                Assignment.start_date <= date_to,
                or_(Assignment.end_date.is_(None), Assignment.end_date >= date_from),
            )
            .order_by(Assignment.start_date.asc(), Assignment.id.asc())
        )
        if person_id is not None:
            stmt = stmt.where(Assignment.person_id == person_id)
        if person_ids is not None:
            stmt = stmt.where(Assignment.person_id.in_(sorted(set(person_ids))))
        if site_id is not None:
            stmt = stmt.where(Assignment.site_id == site_id)
        if supervisor_id is not None:
            stmt = stmt.where(Assignment.supervisor_id == supervisor_id)
        if not include_inactive:
            stmt = stmt.where(Assignment.is_active.is_(True))
        return list(self.db.scalars(stmt).all())

    def get_person(self, person_id: int) -> Person | None:
        return self.db.get(Person, person_id)

    def get_persons(self, person_ids: Iterable[int]) -> dict[int, Person]:
        ids = sorted(set(person_ids))
        if not ids:
            return {}
        rows = self.db.scalars(select(Person).where(Person.id.in_(ids))).all()
        return {row.id: row for row in rows}

    def get_site(self, site_id: int) -> Site | None:
        return self.db.get(Site, site_id)

    def get_sites(self, site_ids: Iterable[int]) -> dict[int, Site]:
        ids = sorted(set(site_ids))
        if not ids:
            return {}
        rows = self.db.scalars(select(Site).where(Site.id.in_(ids))).all()
        return {row.id: row for row in rows}

    def get_shifts(self, shift_ids: Iterable[int | None]) -> dict[int, Shift]:
        ids = sorted({item for item in shift_ids if item is not None})
        if not ids:
            return {}
        rows = self.db.scalars(select(Shift).where(Shift.id.in_(ids))).all()
        return {row.id: row for row in rows}

    def get_attendance(self, record_id: int) -> AttendanceRecord | None:
        return self.db.get(AttendanceRecord, record_id, populate_existing=True)

    def find_open_attendance(self, person_id: int, attendance_date: date) -> AttendanceRecord | None:
        return self.db.scalar(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.person_id == person_id,
                AttendanceRecord.attendance_date == attendance_date,
                AttendanceRecord.state == AttendanceState.CHECKED_IN,
            )
            .order_by(AttendanceRecord.id.desc())
            .execution_options(populate_existing=True)
        )

    def find_latest_open_attendance(self, person_id: int) -> AttendanceRecord | None:
        return self.db.scalar(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.person_id == person_id,
                AttendanceRecord.state == AttendanceState.CHECKED_IN,
            )
            .order_by(AttendanceRecord.attendance_date.desc(), AttendanceRecord.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )

    def find_attendance_for_day(self, person_id: int, attendance_date: date) -> list[AttendanceRecord]:
        return list(
            self.db.scalars(
                select(AttendanceRecord)
                .where(
                    AttendanceRecord.person_id == person_id,
                    AttendanceRecord.attendance_date == attendance_date,
                )
                .order_by(AttendanceRecord.id.asc())
                .execution_options(populate_existing=True)
            ).all()
        )

    def list_attendance(
        self,
        *,
        date_from: date,
        date_to: date,
        person_id: int | None = None,
        site_id: int | None = None,
    ) -> list[AttendanceRecord]:
        stmt = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.attendance_date >= date_from,
                AttendanceRecord.attendance_date <= date_to,
            )
            .order_by(
                AttendanceRecord.attendance_date.asc(),
                AttendanceRecord.person_id.asc(),
                AttendanceRecord.id.asc(),
            )
        )
        if person_id is not None:
            stmt = stmt.where(AttendanceRecord.person_id == person_id)
        if site_id is not None:
            stmt = stmt.where(AttendanceRecord.site_id == site_id)
        return list(self.db.scalars(stmt).all())

    def insert_attendance_if_no_open_session(self, record: AttendanceRecord) -> AttendanceRecord | None:
        """Insert ``record`` unless the person already holds an open session on any day.

        Returns ``None`` when the partial unique index rejects the row.
        """
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "attendance_open_session_conflict",
                extra={
                    "person_id": record.person_id,
                    "attendance_date": record.attendance_date,
                },
            )
            return None
        self.db.refresh(record)
        return record

    def insert_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def update_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record
