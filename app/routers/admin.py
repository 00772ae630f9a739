import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.access import Operation, Principal, Resource, ensure_allowed
from app.db import get_db
from app.models import AuditAction, AuditLog
from app.schemas import (
    AuditLogRead,
    DeleteResponse,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
    ScheduleCreate,
    ScheduleRead,
    ScheduleUpdate,
    TimeEntryRead,
)
from app.security import require_admin
from app.services.attendance import list_time_entries
from app.services.profiles import create_profile, get_profile, list_profiles, update_profile
from app.services.schedules import create_schedule, delete_schedule, list_schedules, update_schedule

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/profiles", response_model=list[ProfileRead])
def read_profiles(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ProfileRead]:
    return list_profiles(db, principal)


@router.get("/profiles/{profile_id}", response_model=ProfileRead)
def read_profile(
    profile_id: uuid.UUID,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return get_profile(db, principal, profile_id)


@router.post("/profiles", response_model=ProfileRead, status_code=status.HTTP_201_CREATED)
def add_profile(
    payload: ProfileCreate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return create_profile(db, principal, payload.model_dump())


@router.put("/profiles/{profile_id}", response_model=ProfileRead)
def edit_profile(
    profile_id: uuid.UUID,
    payload: ProfileUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return update_profile(db, principal, profile_id, payload.model_dump(exclude_unset=True))


@router.get("/schedules", response_model=list[ScheduleRead])
def read_schedules(
    user_id: uuid.UUID | None = Query(default=None),
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ScheduleRead]:
    return list_schedules(db, principal, user_id=user_id)


@router.post("/schedules", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED)
def add_schedule(
    payload: ScheduleCreate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ScheduleRead:
    return create_schedule(
        db,
        principal,
        user_id=payload.user_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
    )


@router.put("/schedules/{schedule_id}", response_model=ScheduleRead)
def edit_schedule(
    schedule_id: uuid.UUID,
    payload: ScheduleUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ScheduleRead:
    return update_schedule(db, principal, schedule_id, payload.model_dump(exclude_unset=True))


@router.delete("/schedules/{schedule_id}", response_model=DeleteResponse)
def remove_schedule(
    schedule_id: uuid.UUID,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    delete_schedule(db, principal, schedule_id)
    return DeleteResponse(ok=True, id=schedule_id)


@router.get("/time-entries", response_model=list[TimeEntryRead])
def read_time_entries(
    user_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[TimeEntryRead]:
    return list_time_entries(db, principal, user_id=user_id, limit=limit)


@router.get("/audit-logs", response_model=list[AuditLogRead])
def list_audit_logs(
    table_name: str | None = Query(default=None),
    action: AuditAction | None = Query(default=None),
    record_id: uuid.UUID | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    ensure_allowed(principal, Resource.AUDIT_LOGS, Operation.READ)
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if table_name:
        stmt = stmt.where(AuditLog.table_name == table_name)
    if action is not None:
        stmt = stmt.where(AuditLog.action == action)
    if record_id is not None:
        stmt = stmt.where(AuditLog.record_id == record_id)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if start is not None:
        stmt = stmt.where(AuditLog.created_at >= start)
    if end is not None:
        stmt = stmt.where(AuditLog.created_at <= end)
    return list(db.scalars(stmt).all())
