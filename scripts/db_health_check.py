#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.audit import PROTECTED_TABLES
from app.settings import get_settings

EXPECTED_HEAD = "0001_initial"

# Rows in these tables must each have an INSERT record in the audit trail.
AUDITED_TABLES = tuple(sorted(PROTECTED_TABLES))


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
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

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

        missing_tables = [table for table in (*AUDITED_TABLES, "audit_logs") if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "audit_logs" in tables:
            for table in AUDITED_TABLES:
                if table not in tables:
                    continue
                unaudited = conn.execute(
                    text(
                        f"""
                        select t.id
                        from {table} t
                        left join audit_logs a
                          on a.record_id = t.id
                         and a.table_name = :table_name
                         and a.action = 'INSERT'
                        where a.id is null
                        limit 20
                        """
                    ),
                    {"table_name": table},
                ).fetchall()
                add(
                    f"unaudited_rows:{table}",
                    "fail" if unaudited else "ok",
                    {"sample_ids": [str(row[0]) for row in unaudited]},
                )

        if "geo_fences" in tables:
            bad_fences = conn.execute(
                text("select id from geo_fences where radius <= 0 limit 20")
            ).fetchall()
            add(
                "geo_fence_non_positive_radius",
                "fail" if bad_fences else "ok",
                {"sample_ids": [str(row[0]) for row in bad_fences]},
            )

        if "time_entries" in tables:
            orphan_entries = conn.execute(
                text(
                    """
                    select t.id
                    from time_entries t
                    left join profiles p on p.id = t.user_id
                    where p.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "time_entry_orphan_profile",
                "fail" if orphan_entries else "ok",
                {"sample_ids": [str(row[0]) for row in orphan_entries]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
