import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, model_validator

from app.models import MAX_FENCE_RADIUS, AuditAction, EntryType, Role


class ProfileCreate(BaseModel):
    id: uuid.UUID
    email: str = Field(min_length=3, max_length=320)
    full_name: str | None = Field(default=None, max_length=255)
    role: Role = Role.EMPLOYEE
    employee_id: str | None = Field(default=None, max_length=64)
    department: str | None = Field(default=None, max_length=255)


class ProfileUpdate(BaseModel):
    email: str | None = Field(default=None, min_length=3, max_length=320)
    full_name: str | None = Field(default=None, max_length=255)
    role: Role | None = None
    employee_id: str | None = Field(default=None, max_length=64)
    department: str | None = Field(default=None, max_length=255)


class ProfileRead(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str | None = None
    role: Role
    employee_id: str | None = None
    department: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClockEventCreate(BaseModel):
    entry_type: EntryType
    # Defaults to the caller; anything else is rejected by the access rules.
    user_id: uuid.UUID | None = None
    ip_address: str | None = Field(default=None, max_length=64)
    device_info: dict[str, Any] | None = None
    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)
    notes: str | None = Field(default=None, max_length=1000)


class TimeEntryRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    entry_type: EntryType
    timestamp: datetime
    ip_address: str | None = None
    device_info: dict[str, Any] | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduleCreate(BaseModel):
    user_id: uuid.UUID
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_time_order(self) -> "ScheduleCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ScheduleUpdate(BaseModel):
    user_id: uuid.UUID | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class ScheduleRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    created_by: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IpWhitelistCreate(BaseModel):
    ip_address: IPvAnyAddress
    description: str | None = Field(default=None, max_length=1000)


class IpWhitelistUpdate(BaseModel):
    ip_address: IPvAnyAddress | None = None
    description: str | None = Field(default=None, max_length=1000)


class IpWhitelistRead(BaseModel):
    id: uuid.UUID
    ip_address: str
    description: str | None = None
    created_by: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GeoFenceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    latitude: Decimal = Field(ge=-90, le=90)
    longitude: Decimal = Field(ge=-180, le=180)
    radius: int = Field(gt=0, le=MAX_FENCE_RADIUS)


class GeoFenceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)
    radius: int | None = Field(default=None, gt=0, le=MAX_FENCE_RADIUS)


class GeoFenceRead(BaseModel):
    id: uuid.UUID
    name: str
    latitude: Decimal
    longitude: Decimal
    radius: int
    created_by: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    action: AuditAction
    table_name: str
    record_id: uuid.UUID | None = None
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeleteResponse(BaseModel):
    ok: bool
    id: uuid.UUID
