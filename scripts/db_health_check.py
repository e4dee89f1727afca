#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import create_engine, inspect, text

from siteguard.settings import get_settings


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = ["persons", "sites", "shifts", "assignments", "attendance_records", "audit_logs"]


def run() -> dict:
    engine = create_engine(get_settings().database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(inspect(conn).get_table_names())

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "assignments" in tables:
            overlapping = conn.execute(
                text(
                    """
                    select a.person_id, a.id, b.id
                    from assignments a
                    join assignments b
                      on b.person_id = a.person_id
                     and b.id > a.id
                     and b.is_active = true
                    where a.is_active = true
                      and a.start_date <= coalesce(b.end_date, date '9999-12-31')
                      and b.start_date <= coalesce(a.end_date, date '9999-12-31')
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "overlapping_active_assignments",
                "warn" if overlapping else "ok",
                {"rows": [list(row) for row in overlapping]},
            )

        if "attendance_records" in tables:
            duplicate_open_sessions = conn.execute(
                text(
                    """
                    select person_id, min(attendance_date), count(*)
                    from attendance_records
                    where state = 'CHECKED_IN'
                    group by person_id
                    having count(*) > 1
                    """
                )
            ).fetchall()
            add(
                "duplicate_open_sessions",
                "fail" if duplicate_open_sessions else "ok",
                {"rows": [[row[0], str(row[1]), row[2]] for row in duplicate_open_sessions]},
            )

            orphan_persons = conn.execute(
                text(
                    """
                    select a.id
                    from attendance_records a
                    left join persons p on p.id = a.person_id
                    where p.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "attendance_orphan_person",
                "fail" if orphan_persons else "ok",
                {"sample_ids": [row[0] for row in orphan_persons]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
