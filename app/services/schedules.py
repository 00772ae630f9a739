from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.access import Operation, Principal, Resource, ensure_allowed
from app.db import commit_or_rollback
from app.errors import NotFound, ValidationError
from app.models import Profile, Schedule

logger = logging.getLogger("app.schedules")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate_window(start_time: datetime, end_time: datetime) -> None:
    if _as_utc(start_time) >= _as_utc(end_time):
        raise ValidationError("start_time must be before end_time.")


def _ensure_profile_exists(db: Session, user_id: uuid.UUID) -> None:
    if db.get(Profile, user_id) is None:
        raise NotFound("Profile not found.")


def _get_schedule_or_404(db: Session, schedule_id: uuid.UUID) -> Schedule:
    schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFound("Schedule not found.")
    return schedule


def list_my_schedules(db: Session, principal: Principal) -> list[Schedule]:
    ensure_allowed(principal, Resource.SCHEDULES, Operation.READ, owner_id=principal.id)
    stmt = select(Schedule).where(Schedule.user_id == principal.id).order_by(Schedule.start_time)
    return list(db.scalars(stmt).all())


def list_schedules(
    db: Session,
    principal: Principal,
    *,
    user_id: uuid.UUID | None = None,
) -> list[Schedule]:
    ensure_allowed(principal, Resource.SCHEDULES, Operation.READ, owner_id=user_id)
    stmt = select(Schedule).order_by(Schedule.start_time)
    if user_id is not None:
        stmt = stmt.where(Schedule.user_id == user_id)
    return list(db.scalars(stmt).all())


def create_schedule(
    db: Session,
    principal: Principal,
    *,
    user_id: uuid.UUID,
    start_time: datetime,
    end_time: datetime,
) -> Schedule:
    ensure_allowed(principal, Resource.SCHEDULES, Operation.INSERT, owner_id=user_id)
    _validate_window(start_time, end_time)
    _ensure_profile_exists(db, user_id)

    schedule = Schedule(
        user_id=user_id,
        start_time=start_time,
        end_time=end_time,
        created_by=principal.id,
    )
    db.add(schedule)
    commit_or_rollback(db)
    db.refresh(schedule)
    logger.info("schedule_created", extra={"schedule_id": schedule.id, "employee_id": user_id})
    return schedule


def update_schedule(
    db: Session,
    principal: Principal,
    schedule_id: uuid.UUID,
    changes: Mapping[str, Any],
) -> Schedule:
    ensure_allowed(principal, Resource.SCHEDULES, Operation.UPDATE)
    schedule = _get_schedule_or_404(db, schedule_id)

    user_id = changes.get("user_id") or schedule.user_id
    start_time = changes.get("start_time") or schedule.start_time
    end_time = changes.get("end_time") or schedule.end_time
    _validate_window(start_time, end_time)
    if user_id != schedule.user_id:
        _ensure_profile_exists(db, user_id)

    # Only touch columns that actually change so no-op updates leave no audit row.
    if user_id != schedule.user_id:
        schedule.user_id = user_id
    if _as_utc(start_time) != _as_utc(schedule.start_time):
        schedule.start_time = start_time
    if _as_utc(end_time) != _as_utc(schedule.end_time):
        schedule.end_time = end_time

    commit_or_rollback(db)
    db.refresh(schedule)
    logger.info("schedule_updated", extra={"schedule_id": schedule.id})
    return schedule


def delete_schedule(db: Session, principal: Principal, schedule_id: uuid.UUID) -> None:
    ensure_allowed(principal, Resource.SCHEDULES, Operation.DELETE)
    schedule = _get_schedule_or_404(db, schedule_id)
    db.delete(schedule)
    commit_or_rollback(db)
    logger.info("schedule_deleted", extra={"schedule_id": schedule_id})
