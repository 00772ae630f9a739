from __future__ import annotations

import ipaddress
import logging
import uuid
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.access import Operation, Principal, Resource, ensure_allowed
from app.db import commit_or_rollback
from app.errors import NotFound, UniquenessViolation, ValidationError
from app.models import COORDINATE_SCALE, MAX_FENCE_RADIUS, GeoFence, IpWhitelistEntry

logger = logging.getLogger("app.policy")

_COORDINATE_QUANTUM = Decimal(1).scaleb(-COORDINATE_SCALE)


def canonical_ip(value: Any) -> str:
    try:
        return str(ipaddress.ip_address(str(value).strip()))
    except ValueError as exc:
        raise ValidationError(f"Invalid IP address: {value!r}.") from exc


def quantize_coordinate(value: Any, *, field: str) -> Decimal:
    try:
        return Decimal(str(value)).quantize(_COORDINATE_QUANTUM)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a decimal number.") from exc


def _validated_radius(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("radius must be an integer number of meters.")
    if value <= 0:
        raise ValidationError("radius must be greater than zero.")
    if value > MAX_FENCE_RADIUS:
        raise ValidationError(f"radius must not exceed {MAX_FENCE_RADIUS}.")
    return value


def _duplicate_ip_error(ip_address: str) -> UniquenessViolation:
    return UniquenessViolation(f"IP address {ip_address} is already whitelisted.")


def _ensure_ip_available(db: Session, ip_address: str, *, exclude_id: uuid.UUID | None = None) -> None:
    stmt = select(IpWhitelistEntry.id).where(IpWhitelistEntry.ip_address == ip_address)
    if exclude_id is not None:
        stmt = stmt.where(IpWhitelistEntry.id != exclude_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise _duplicate_ip_error(ip_address)


def _get_ip_entry(db: Session, entry_id: uuid.UUID) -> IpWhitelistEntry:
    entry = db.get(IpWhitelistEntry, entry_id)
    if entry is None:
        raise NotFound("IP whitelist entry not found.")
    return entry


def _get_fence(db: Session, fence_id: uuid.UUID) -> GeoFence:
    fence = db.get(GeoFence, fence_id)
    if fence is None:
        raise NotFound("Geo fence not found.")
    return fence


def list_ip_whitelist(db: Session, principal: Principal) -> list[IpWhitelistEntry]:
    ensure_allowed(principal, Resource.IP_WHITELIST, Operation.READ)
    return list(db.scalars(select(IpWhitelistEntry).order_by(IpWhitelistEntry.created_at)).all())


def create_ip_whitelist_entry(
    db: Session,
    principal: Principal,
    *,
    ip_address: Any,
    description: str | None = None,
) -> IpWhitelistEntry:
    ensure_allowed(principal, Resource.IP_WHITELIST, Operation.INSERT)
    normalized = canonical_ip(ip_address)
    _ensure_ip_available(db, normalized)

    entry = IpWhitelistEntry(
        ip_address=normalized,
        description=description,
        created_by=principal.id,
    )
    db.add(entry)
    # A concurrent insert of the same address loses on the unique constraint.
    commit_or_rollback(db, conflict=_duplicate_ip_error(normalized))
    db.refresh(entry)
    logger.info("ip_whitelist_created", extra={"entry_id": entry.id, "ip": normalized, "actor_id": principal.id})
    return entry


def update_ip_whitelist_entry(
    db: Session,
    principal: Principal,
    entry_id: uuid.UUID,
    changes: Mapping[str, Any],
) -> IpWhitelistEntry:
    ensure_allowed(principal, Resource.IP_WHITELIST, Operation.UPDATE)
    entry = _get_ip_entry(db, entry_id)

    if changes.get("ip_address") is not None:
        normalized = canonical_ip(changes["ip_address"])
        if normalized != entry.ip_address:
            _ensure_ip_available(db, normalized, exclude_id=entry.id)
            entry.ip_address = normalized
    if "description" in changes:
        entry.description = changes["description"]

    commit_or_rollback(db, conflict=_duplicate_ip_error(entry.ip_address))
    db.refresh(entry)
    logger.info("ip_whitelist_updated", extra={"entry_id": entry.id, "actor_id": principal.id})
    return entry


def delete_ip_whitelist_entry(db: Session, principal: Principal, entry_id: uuid.UUID) -> None:
    ensure_allowed(principal, Resource.IP_WHITELIST, Operation.DELETE)
    entry = _get_ip_entry(db, entry_id)
    db.delete(entry)
    commit_or_rollback(db)
    logger.info("ip_whitelist_deleted", extra={"entry_id": entry_id, "actor_id": principal.id})


def list_geo_fences(db: Session, principal: Principal) -> list[GeoFence]:
    ensure_allowed(principal, Resource.GEO_FENCES, Operation.READ)
    return list(db.scalars(select(GeoFence).order_by(GeoFence.name, GeoFence.created_at)).all())


def create_geo_fence(
    db: Session,
    principal: Principal,
    *,
    name: str,
    latitude: Any,
    longitude: Any,
    radius: Any,
) -> GeoFence:
    ensure_allowed(principal, Resource.GEO_FENCES, Operation.INSERT)
    fence = GeoFence(
        name=name,
        latitude=quantize_coordinate(latitude, field="latitude"),
        longitude=quantize_coordinate(longitude, field="longitude"),
        radius=_validated_radius(radius),
        created_by=principal.id,
    )
    db.add(fence)
    commit_or_rollback(db)
    db.refresh(fence)
    logger.info(
        "geo_fence_created",
        extra={"fence_id": fence.id, "radius": fence.radius, "actor_id": principal.id},
    )
    return fence


def update_geo_fence(
    db: Session,
    principal: Principal,
    fence_id: uuid.UUID,
    changes: Mapping[str, Any],
) -> GeoFence:
    ensure_allowed(principal, Resource.GEO_FENCES, Operation.UPDATE)
    fence = _get_fence(db, fence_id)

    values: dict[str, Any] = {}
    if changes.get("name") is not None:
        values["name"] = changes["name"]
    if changes.get("latitude") is not None:
        values["latitude"] = quantize_coordinate(changes["latitude"], field="latitude")
    if changes.get("longitude") is not None:
        values["longitude"] = quantize_coordinate(changes["longitude"], field="longitude")
    if "radius" in changes:
        values["radius"] = _validated_radius(changes["radius"])

    for key, value in values.items():
        setattr(fence, key, value)
    commit_or_rollback(db)
    db.refresh(fence)
    logger.info("geo_fence_updated", extra={"fence_id": fence.id, "actor_id": principal.id})
    return fence


def delete_geo_fence(db: Session, principal: Principal, fence_id: uuid.UUID) -> None:
    ensure_allowed(principal, Resource.GEO_FENCES, Operation.DELETE)
    fence = _get_fence(db, fence_id)
    db.delete(fence)
    commit_or_rollback(db)
    logger.info("geo_fence_deleted", extra={"fence_id": fence_id, "actor_id": principal.id})
