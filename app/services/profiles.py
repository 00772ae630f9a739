from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.access import Operation, Principal, Resource, ensure_allowed
from app.db import commit_or_rollback
from app.errors import NotFound, UniquenessViolation
from app.models import GeoFence, IpWhitelistEntry, Profile, Role, Schedule

logger = logging.getLogger("app.profiles")

_PROFILE_FIELDS = ("email", "full_name", "role", "employee_id", "department")


def _duplicate_employee_id(employee_id: str | None) -> UniquenessViolation:
    return UniquenessViolation(f"Employee id {employee_id} is already assigned.")


def _ensure_employee_id_available(
    db: Session,
    employee_id: str | None,
    *,
    exclude_id: uuid.UUID | None = None,
) -> None:
    if not employee_id:
        return
    stmt = select(Profile.id).where(Profile.employee_id == employee_id)
    if exclude_id is not None:
        stmt = stmt.where(Profile.id != exclude_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise _duplicate_employee_id(employee_id)


def _get_profile_or_404(db: Session, profile_id: uuid.UUID) -> Profile:
    profile = db.get(Profile, profile_id)
    if profile is None:
        raise NotFound("Profile not found.")
    return profile


def ensure_profile(db: Session, *, profile_id: uuid.UUID, email: str | None) -> Profile:
    """Return the profile for an authenticated subject, creating it on first sight."""
    profile = db.get(Profile, profile_id)
    if profile is not None:
        return profile

    profile = Profile(id=profile_id, email=email or "", role=Role.EMPLOYEE)
    db.add(profile)
    try:
        commit_or_rollback(db, conflict=UniquenessViolation("Profile already exists."))
    except UniquenessViolation:
        # Provisioned by a concurrent request.
        existing = db.get(Profile, profile_id)
        if existing is None:
            raise
        return existing
    logger.info("profile_provisioned", extra={"profile_id": profile_id})
    return profile


def get_me(db: Session, principal: Principal) -> Profile:
    ensure_allowed(principal, Resource.PROFILES, Operation.READ, owner_id=principal.id)
    return _get_profile_or_404(db, principal.id)


def list_profiles(db: Session, principal: Principal) -> list[Profile]:
    ensure_allowed(principal, Resource.PROFILES, Operation.READ)
    return list(db.scalars(select(Profile).order_by(Profile.email)).all())


def get_profile(db: Session, principal: Principal, profile_id: uuid.UUID) -> Profile:
    ensure_allowed(principal, Resource.PROFILES, Operation.READ, owner_id=profile_id)
    return _get_profile_or_404(db, profile_id)


def create_profile(db: Session, principal: Principal, values: Mapping[str, Any]) -> Profile:
    ensure_allowed(principal, Resource.PROFILES, Operation.INSERT)
    profile_id = values["id"]
    if db.get(Profile, profile_id) is not None:
        raise UniquenessViolation("Profile already exists.")
    _ensure_employee_id_available(db, values.get("employee_id"))

    profile = Profile(id=profile_id, **{key: values[key] for key in _PROFILE_FIELDS if key in values})
    db.add(profile)
    commit_or_rollback(db, conflict=UniquenessViolation("Profile or employee id already exists."))
    db.refresh(profile)
    logger.info("profile_created", extra={"profile_id": profile.id, "actor_id": principal.id})
    return profile


def update_profile(
    db: Session,
    principal: Principal,
    profile_id: uuid.UUID,
    changes: Mapping[str, Any],
) -> Profile:
    ensure_allowed(principal, Resource.PROFILES, Operation.UPDATE, owner_id=profile_id)
    profile = _get_profile_or_404(db, profile_id)

    if "employee_id" in changes and changes["employee_id"] != profile.employee_id:
        _ensure_employee_id_available(db, changes["employee_id"], exclude_id=profile.id)
    for key in _PROFILE_FIELDS:
        if key not in changes:
            continue
        if key in {"email", "role"} and changes[key] is None:
            continue
        setattr(profile, key, changes[key])

    commit_or_rollback(db, conflict=_duplicate_employee_id(profile.employee_id))
    db.refresh(profile)
    logger.info("profile_updated", extra={"profile_id": profile.id, "actor_id": principal.id})
    return profile


def set_role(db: Session, profile_id: uuid.UUID, role: Role) -> Profile:
    """Operator action; runs under whatever audit context the session carries."""
    profile = _get_profile_or_404(db, profile_id)
    profile.role = role
    commit_or_rollback(db)
    logger.info("profile_role_set", extra={"profile_id": profile_id, "role": role.value})
    return profile


def purge_profile(db: Session, profile_id: uuid.UUID) -> None:
    """Delete a profile together with its time entries and schedules.

    Authorship references held by other rows are cleared first so that every
    affected row goes through the ORM and is audited.
    """
    profile = _get_profile_or_404(db, profile_id)

    for model in (Schedule, IpWhitelistEntry, GeoFence):
        rows = db.scalars(select(model).where(model.created_by == profile_id)).all()
        for row in rows:
            if getattr(row, "user_id", None) == profile_id:
                continue
            row.created_by = None

    db.delete(profile)
    commit_or_rollback(db)
    logger.warning("profile_purged", extra={"profile_id": profile_id})
