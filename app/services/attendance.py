from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.access import Operation, Principal, Resource, ensure_allowed
from app.db import commit_or_rollback
from app.errors import LocationDenied, ValidationError
from app.models import EntryType, TimeEntry
from app.services.location import authorize, normalize_ip
from app.services.policy_store import quantize_coordinate

logger = logging.getLogger("app.attendance")


def _normalize_ts(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)

    return ts.astimezone(timezone.utc)


def _parse_entry_type(value: Any) -> EntryType:
    try:
        return EntryType(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in EntryType)
        raise ValidationError(f"entry_type must be one of: {allowed}.") from exc


def record_event(
    db: Session,
    principal: Principal,
    *,
    entry_type: EntryType | str,
    ip_address: str | None,
    device_info: dict[str, Any] | None = None,
    latitude: Any = None,
    longitude: Any = None,
    notes: str | None = None,
    user_id: uuid.UUID | None = None,
    timestamp: datetime | None = None,
) -> TimeEntry:
    """Persist a clock-in/clock-out event for ``principal``.

    Order of checks: ownership (a principal only ever records their own
    events), entry type, then the location policy. A denied location raises
    ``LocationDenied`` before anything is written. On success the entry and
    its INSERT audit record are committed together.
    """
    owner_id = user_id or principal.id
    ensure_allowed(principal, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=owner_id)

    parsed_type = _parse_entry_type(entry_type)
    if device_info is not None and not isinstance(device_info, dict):
        raise ValidationError("device_info must be an object.")
    lat = quantize_coordinate(latitude, field="latitude") if latitude is not None else None
    lon = quantize_coordinate(longitude, field="longitude") if longitude is not None else None
    normalized_ip = normalize_ip(ip_address) if ip_address else None

    if not authorize(db, lat, lon, normalized_ip):
        logger.info(
            "clock_event_location_denied",
            extra={
                "employee_id": owner_id,
                "entry_type": parsed_type.value,
                "ip": normalized_ip,
            },
        )
        raise LocationDenied()

    entry = TimeEntry(
        user_id=owner_id,
        entry_type=parsed_type,
        ip_address=normalized_ip,
        device_info=device_info,
        latitude=lat,
        longitude=lon,
        notes=notes,
    )
    normalized_ts = _normalize_ts(timestamp)
    if normalized_ts is not None:
        entry.timestamp = normalized_ts

    db.add(entry)
    commit_or_rollback(db)
    db.refresh(entry)
    logger.info(
        "clock_event_recorded",
        extra={
            "employee_id": owner_id,
            "event_id": entry.id,
            "entry_type": parsed_type.value,
            "ip": normalized_ip,
        },
    )
    return entry


def list_my_events(db: Session, principal: Principal) -> list[TimeEntry]:
    ensure_allowed(principal, Resource.TIME_ENTRIES, Operation.READ, owner_id=principal.id)
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.user_id == principal.id)
        .order_by(TimeEntry.timestamp.desc(), TimeEntry.created_at.desc())
    )
    return list(db.scalars(stmt).all())


def list_time_entries(
    db: Session,
    principal: Principal,
    *,
    user_id: uuid.UUID | None = None,
    limit: int = 200,
) -> list[TimeEntry]:
    ensure_allowed(principal, Resource.TIME_ENTRIES, Operation.READ, owner_id=user_id)
    stmt = select(TimeEntry).order_by(TimeEntry.timestamp.desc()).limit(limit)
    if user_id is not None:
        stmt = stmt.where(TimeEntry.user_id == user_id)
    return list(db.scalars(stmt).all())
