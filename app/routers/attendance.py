from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.access import Principal
from app.db import get_db
from app.schemas import ClockEventCreate, ProfileRead, ScheduleRead, TimeEntryRead
from app.security import client_ip, get_current_principal
from app.services.attendance import list_my_events, record_event
from app.services.profiles import get_me
from app.services.schedules import list_my_schedules

router = APIRouter(tags=["attendance"])


@router.get("/api/me", response_model=ProfileRead)
def read_me(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return get_me(db, principal)


@router.get("/api/me/schedules", response_model=list[ScheduleRead])
def read_my_schedules(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[ScheduleRead]:
    return list_my_schedules(db, principal)


@router.post(
    "/api/attendance/clock-event",
    response_model=TimeEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def create_clock_event(
    payload: ClockEventCreate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> TimeEntryRead:
    ip_address = payload.ip_address or client_ip(request)
    request.state.employee_id = str(payload.user_id or principal.id)
    entry = record_event(
        db,
        principal,
        entry_type=payload.entry_type,
        ip_address=ip_address,
        device_info=payload.device_info,
        latitude=payload.latitude,
        longitude=payload.longitude,
        notes=payload.notes,
        user_id=payload.user_id,
    )
    request.state.event_id = str(entry.id)
    return entry


@router.get("/api/attendance/my-events", response_model=list[TimeEntryRead])
def read_my_events(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[TimeEntryRead]:
    return list_my_events(db, principal)
