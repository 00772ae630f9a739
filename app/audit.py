"""Transactional audit trail for protected tables.

Every INSERT, UPDATE and DELETE flushed for one of ``PROTECTED_TABLES``
produces an ``audit_logs`` row written on the same connection, inside the same
transaction, as the change itself. If the audit rows cannot be written the
flush raises ``AuditWriteFailure`` and the caller's transaction rolls back, so
no protected change is ever committed without its audit record.

The acting principal and origin IP come from the ``AuditContext`` bound to the
session for the current request. Sessions without a bound context are treated
as system actions (null actor, null IP).
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Numeric, event, insert, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AuditWriteFailure
from app.models import AuditAction, AuditLog

logger = logging.getLogger("app.audit")

PROTECTED_TABLES = frozenset(
    {
        "profiles",
        "time_entries",
        "schedules",
        "ip_whitelist",
        "geo_fences",
    }
)

_CONTEXT_KEY = "audit_context"
_PENDING_KEY = "audit_pending"


@dataclass(frozen=True, slots=True)
class AuditContext:
    actor_id: uuid.UUID | None = None
    ip_address: str | None = None


SYSTEM_CONTEXT = AuditContext()


def bind_audit_context(session: Session, context: AuditContext) -> None:
    session.info[_CONTEXT_KEY] = context


def get_audit_context(session: Session) -> AuditContext:
    context = session.info.get(_CONTEXT_KEY)
    if isinstance(context, AuditContext):
        return context
    return SYSTEM_CONTEXT


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    return str(value)


def _column_value(column: Any, value: Any) -> Any:
    # Match the stored representation so snapshots compare equal to the committed row.
    if isinstance(value, Decimal) and isinstance(column.type, Numeric) and column.type.scale is not None:
        value = value.quantize(Decimal(1).scaleb(-column.type.scale))
    return _json_value(value)


def row_snapshot(obj: Any) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    snapshot: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        snapshot[column.name] = _column_value(column, getattr(obj, attr.key))
    return snapshot


def _prior_snapshot(obj: Any) -> dict[str, Any]:
    state = inspect(obj)
    snapshot: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        column = attr.columns[0]
        history = state.attrs[attr.key].load_history()
        if history.deleted:
            value = history.deleted[0]
        elif history.unchanged:
            value = history.unchanged[0]
        else:
            value = None
        snapshot[column.name] = _column_value(column, value)
    return snapshot


def _table_name(obj: Any) -> str | None:
    return getattr(type(obj), "__tablename__", None)


def _is_protected(obj: Any) -> bool:
    return _table_name(obj) in PROTECTED_TABLES


def _insert_audit_rows(connection: Connection, rows: list[dict[str, Any]]) -> None:
    connection.execute(insert(AuditLog.__table__), rows)


@event.listens_for(Session, "before_flush")
def _capture_pending_changes(session: Session, _flush_context, _instances) -> None:  # type: ignore[no-untyped-def]
    pending: list[tuple[AuditAction, Any, dict[str, Any] | None]] = []
    for obj in session.new:
        if _is_protected(obj):
            pending.append((AuditAction.INSERT, obj, None))
    for obj in session.dirty:
        if _is_protected(obj) and session.is_modified(obj, include_collections=False):
            pending.append((AuditAction.UPDATE, obj, _prior_snapshot(obj)))
    for obj in session.deleted:
        if _is_protected(obj):
            pending.append((AuditAction.DELETE, obj, row_snapshot(obj)))
    session.info[_PENDING_KEY] = pending


@event.listens_for(Session, "after_flush")
def _write_audit_records(session: Session, _flush_context) -> None:  # type: ignore[no-untyped-def]
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return

    context = get_audit_context(session)
    rows: list[dict[str, Any]] = []
    for action, obj, prior in pending:
        new_state = row_snapshot(obj) if action is not AuditAction.DELETE else None
        record_id = (prior or new_state or {}).get("id")
        rows.append(
            {
                "id": uuid.uuid4(),
                "user_id": context.actor_id,
                "action": action,
                "table_name": _table_name(obj),
                "record_id": uuid.UUID(record_id) if record_id else None,
                "old_data": prior if action is not AuditAction.INSERT else None,
                "new_data": new_state,
                "ip_address": context.ip_address,
            }
        )

    try:
        _insert_audit_rows(session.connection(), rows)
    except SQLAlchemyError as exc:
        logger.exception(
            "audit_log_write_failed",
            extra={
                "actor_id": context.actor_id,
                "tables": sorted({row["table_name"] for row in rows}),
                "count": len(rows),
            },
        )
        raise AuditWriteFailure() from exc

    logger.info(
        "audit_records_written",
        extra={
            "actor_id": context.actor_id,
            "ip": context.ip_address,
            "records": [
                {"action": row["action"].value, "table": row["table_name"], "record_id": row["record_id"]}
                for row in rows
            ],
        },
    )
