from __future__ import annotations

import ipaddress
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import GeoFence, IpWhitelistEntry

logger = logging.getLogger("app.attendance")

Coordinate = Decimal | float | int | str

# Tolerance of the database's geometric comparisons (FPle with EPSILON = 1e-6).
GEOMETRY_EPSILON = 1.0e-6


class FenceLike(Protocol):
    latitude: Decimal
    longitude: Decimal
    radius: int


@dataclass(frozen=True, slots=True)
class LocationDecision:
    ip_allowed: bool
    geo_allowed: bool

    @property
    def allowed(self) -> bool:
        return self.ip_allowed and self.geo_allowed


def _to_decimal(value: Coordinate) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_ip(value: str) -> str:
    raw = value.strip()
    try:
        return str(ipaddress.ip_address(raw))
    except ValueError:
        return raw


def fence_contains(
    *,
    center_lat: Coordinate,
    center_lon: Coordinate,
    radius: Coordinate,
    lat: Coordinate,
    lon: Coordinate,
) -> bool:
    """Planar point-in-circle test over raw (longitude, latitude) degrees.

    The radius is compared in the same raw units as the coordinates, with no
    geodesic correction. Distances are float8 ``hypot`` values and a point
    counts as inside when it lies within ``GEOMETRY_EPSILON`` of the edge, the
    same acceptance region as PostgreSQL's ``point <@ circle``.
    """
    d_lon = float(_to_decimal(lon)) - float(_to_decimal(center_lon))
    d_lat = float(_to_decimal(lat)) - float(_to_decimal(center_lat))
    return math.hypot(d_lon, d_lat) <= float(_to_decimal(radius)) + GEOMETRY_EPSILON


def evaluate_location(
    allowed_ips: Iterable[str],
    fences: Iterable[FenceLike],
    *,
    lat: Coordinate | None,
    lon: Coordinate | None,
    ip_address: str | None,
) -> LocationDecision:
    ip_allowed = False
    if ip_address:
        normalized = normalize_ip(ip_address)
        ip_allowed = any(normalize_ip(item) == normalized for item in allowed_ips)

    geo_allowed = False
    if lat is not None and lon is not None:
        geo_allowed = any(
            fence_contains(
                center_lat=fence.latitude,
                center_lon=fence.longitude,
                radius=fence.radius,
                lat=lat,
                lon=lon,
            )
            for fence in fences
        )

    return LocationDecision(ip_allowed=ip_allowed, geo_allowed=geo_allowed)


def check_location(
    db: Session,
    *,
    lat: Coordinate | None,
    lon: Coordinate | None,
    ip_address: str | None,
) -> LocationDecision:
    allowed_ips: list[str] = []
    if ip_address:
        normalized = normalize_ip(ip_address)
        match = db.scalar(select(IpWhitelistEntry.ip_address).where(IpWhitelistEntry.ip_address == normalized).limit(1))
        if match is not None:
            allowed_ips.append(match)

    fences: list[GeoFence] = []
    if lat is not None and lon is not None:
        fences = list(db.scalars(select(GeoFence)).all())

    return evaluate_location(allowed_ips, fences, lat=lat, lon=lon, ip_address=ip_address)


def authorize(
    db: Session,
    lat: Coordinate | None,
    lon: Coordinate | None,
    ip_address: str | None,
) -> bool:
    """Both the IP allowlist and a geo fence must match; an empty policy denies everything."""
    decision = check_location(db, lat=lat, lon=lon, ip_address=ip_address)
    if not decision.allowed:
        logger.info(
            "location_check_denied",
            extra={
                "ip": ip_address,
                "ip_allowed": decision.ip_allowed,
                "geo_allowed": decision.geo_allowed,
                "has_coordinates": lat is not None and lon is not None,
            },
        )
    return decision.allowed
