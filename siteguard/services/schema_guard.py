from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

EXPECTED_ALEMBIC_HEAD = "0001_initial"

REQUIRED_TABLE_COLUMNS: dict[str, frozenset[str]] = {
    "persons": frozenset({"id", "full_name", "is_active"}),
    "sites": frozenset({"id", "latitude", "longitude", "allowed_radius_m"}),
    "shifts": frozenset({"id", "start_time", "end_time"}),
    "assignments": frozenset(
        {"id", "person_id", "site_id", "shift_id", "start_date", "end_date", "is_active"}
    ),
    "attendance_records": frozenset(
        {"id", "person_id", "attendance_date", "state", "shift_crosses_midnight"}
    ),
    "alembic_version": frozenset({"version_num"}),
}

# The single-open-session guarantee depends on this index existing and being unique.
REQUIRED_UNIQUE_INDEXES: tuple[tuple[str, str], ...] = (
    ("attendance_records", "uq_attendance_records_open_session"),
)


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{type(exc).__name__}")
            continue
        missing = sorted(required - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_unique_indexes(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    for table_name, index_name in REQUIRED_UNIQUE_INDEXES:
        try:
            indexes = {str(item.get("name")): item for item in inspector.get_indexes(table_name) or []}
        except SQLAlchemyError as exc:
            warnings.append(f"INDEX_INSPECTION_FAILED:{table_name}:{type(exc).__name__}")
            continue
        index = indexes.get(index_name)
        if index is None:
            issues.append(f"MISSING_INDEX:{table_name}:{index_name}")
        elif not index.get("unique"):
            issues.append(f"INDEX_NOT_UNIQUE:{table_name}:{index_name}")


def _check_alembic_version(engine: Engine, issues: list[str], warnings: list[str]) -> None:
    try:
        with engine.connect() as connection:
            value = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{type(exc).__name__}")
        return

    version = str(value).strip() if value is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
    elif version != EXPECTED_ALEMBIC_HEAD:
        warnings.append(f"ALEMBIC_VERSION_MISMATCH:{version}:{EXPECTED_ALEMBIC_HEAD}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    inspector = inspect(engine)
    _check_columns(inspector, issues)
    _check_unique_indexes(inspector, issues, warnings)
    _check_alembic_version(engine, issues, warnings)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
