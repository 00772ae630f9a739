from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


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


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "profiles": {"id", "email", "role", "employee_id"},
    "time_entries": {"id", "user_id", "entry_type", "timestamp", "ip_address", "latitude", "longitude"},
    "schedules": {"id", "user_id", "start_time", "end_time", "created_by"},
    "audit_logs": {"id", "user_id", "action", "table_name", "record_id", "old_data", "new_data", "ip_address"},
    "ip_whitelist": {"id", "ip_address"},
    "geo_fences": {"id", "latitude", "longitude", "radius"},
    "alembic_version": {"version_num"},
}

# (table, column) pairs that must carry a single-column unique constraint or index.
REQUIRED_UNIQUE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("ip_whitelist", "ip_address"),
    ("profiles", "employee_id"),
)


def _unique_column_sets(inspector: Any, table_name: str) -> list[set[str]]:
    column_sets: list[set[str]] = []
    for constraint in inspector.get_unique_constraints(table_name) or []:
        column_sets.append({str(item) for item in constraint.get("column_names") or []})
    for index in inspector.get_indexes(table_name) or []:
        if index.get("unique"):
            column_sets.append({str(item) for item in index.get("column_names") or []})
    return column_sets


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, column_name in REQUIRED_UNIQUE_COLUMNS:
        try:
            column_sets = _unique_column_sets(inspector, table_name)
        except SQLAlchemyError as exc:
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        if {column_name} not in column_sets:
            issues.append(f"MISSING_UNIQUE:{table_name}:{column_name}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
