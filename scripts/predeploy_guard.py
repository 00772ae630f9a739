#!/usr/bin/env python
"""Pre-deploy gate: exits non-zero when a release would come up broken.

Checks migrations against the live database, token verification config, and
whether the location policy would let anyone clock in at all.
"""
from __future__ import annotations

import json
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Connection

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.models import GeoFence, IpWhitelistEntry, Profile, Role
from app.services.schema_guard import verify_runtime_schema
from app.settings import get_settings

# alembic_version.version_num is VARCHAR(32).
MAX_REVISION_LENGTH = 32


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status, "details": self.details}


def _script_directory() -> ScriptDirectory:
    return ScriptDirectory.from_config(Config(str(ROOT_DIR / "alembic.ini")))


def check_revisions(script: ScriptDirectory) -> CheckResult:
    revisions = [item.revision for item in script.walk_revisions()]
    too_long = sorted(item for item in revisions if len(item) > MAX_REVISION_LENGTH)
    heads = script.get_heads()
    status = "ok"
    if too_long or len(heads) != 1:
        status = "fail"
    return CheckResult(
        "migration_revisions",
        status,
        {"total": len(revisions), "heads": sorted(heads), "too_long": too_long},
    )


def check_token_config() -> CheckResult:
    settings = get_settings()
    secret_set = bool(settings.jwt_secret.strip())
    return CheckResult(
        "jwt_config",
        "ok" if secret_set else "fail",
        {"jwt_secret_set": secret_set, "jwt_audience": settings.jwt_audience, "jwt_issuer": settings.jwt_issuer},
    )


def check_migrated(connection: Connection, script: ScriptDirectory) -> CheckResult:
    current = [str(row[0]).strip() for row in connection.execute(text("SELECT version_num FROM alembic_version"))]
    missing = sorted(head for head in script.get_heads() if head not in current)
    return CheckResult("database_migrated", "fail" if missing else "ok", {"current": current, "missing_heads": missing})


def check_location_policy(connection: Connection) -> CheckResult:
    whitelist_count = connection.scalar(select(func.count()).select_from(IpWhitelistEntry)) or 0
    fence_count = connection.scalar(select(func.count()).select_from(GeoFence)) or 0
    # Both lists must be non-empty for any clock event to pass.
    status = "ok" if whitelist_count and fence_count else "warn"
    return CheckResult("location_policy", status, {"ip_whitelist": whitelist_count, "geo_fences": fence_count})


def check_admin_present(connection: Connection) -> CheckResult:
    admin_count = connection.scalar(select(func.count()).select_from(Profile).where(Profile.role == Role.ADMIN)) or 0
    return CheckResult("admin_profile", "ok" if admin_count else "warn", {"admins": admin_count})


def run_database_checks(script: ScriptDirectory) -> list[CheckResult]:
    database_url = get_settings().database_url
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        schema_result = verify_runtime_schema(engine)
        results = [
            CheckResult("schema_guard", "ok" if schema_result.ok else "fail", schema_result.to_dict()),
        ]
        if not schema_result.ok:
            return results
        connection_checks: list[Callable[[Connection], CheckResult]] = [
            lambda conn: check_migrated(conn, script),
            check_location_policy,
            check_admin_present,
        ]
        with engine.connect() as connection:
            results.extend(check(connection) for check in connection_checks)
        return results
    finally:
        engine.dispose()


def main() -> int:
    script = _script_directory()
    checks = [check_revisions(script), check_token_config(), *run_database_checks(script)]
    failed = [check.name for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": not failed,
        "failed": failed,
        "checks": [check.as_dict() for check in checks],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
