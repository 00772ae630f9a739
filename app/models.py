from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

# Fractional digits kept for coordinates (DECIMAL(10, 8) / DECIMAL(11, 8)).
COORDINATE_SCALE = 8

# Upper bound of the INTEGER radius column.
MAX_FENCE_RADIUS = 2_147_483_647

JsonDocument = JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [item.value for item in enum_cls]


def _string_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # VARCHAR + CHECK over the enum values rather than a native database enum.
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        values_callable=_enum_values,
        length=16,
    )


class Role(str, enum.Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


class EntryType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


class AuditAction(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(
        _string_enum(Role, "profile_role"),
        nullable=False,
        default=Role.EMPLOYEE,
        server_default=text("'employee'"),
    )
    employee_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    time_entries: Mapped[list[TimeEntry]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )
    schedules: Mapped[list[Schedule]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="Schedule.user_id",
    )


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_type: Mapped[EntryType] = mapped_column(
        _string_enum(EntryType, "time_entry_type"),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, COORDINATE_SCALE), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(11, COORDINATE_SCALE), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[Profile] = relationship(back_populates="time_entries")


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (CheckConstraint("start_time < end_time", name="ck_schedules_time_order"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    user: Mapped[Profile] = relationship(back_populates="schedules", foreign_keys=[user_id])


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # No foreign key: the trail outlives the profiles it mentions.
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    action: Mapped[AuditAction] = mapped_column(
        _string_enum(AuditAction, "audit_action"),
        nullable=False,
    )
    table_name: Mapped[str] = mapped_column(String(63), nullable=False, index=True)
    record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )


class IpWhitelistEntry(Base):
    __tablename__ = "ip_whitelist"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class GeoFence(Base):
    __tablename__ = "geo_fences"
    __table_args__ = (CheckConstraint("radius > 0", name="ck_geo_fences_radius_positive"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[Decimal] = mapped_column(Numeric(10, COORDINATE_SCALE), nullable=False)
    longitude: Mapped[Decimal] = mapped_column(Numeric(11, COORDINATE_SCALE), nullable=False)
    radius: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


# Registers the flush listeners that write the audit trail for every session.
from app import audit as _audit  # noqa: E402,F401
