from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Callable

from app.errors import AccessDenied
from app.models import Role


@dataclass(frozen=True, slots=True)
class Principal:
    id: uuid.UUID
    role: Role
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class Resource(str, enum.Enum):
    PROFILES = "profiles"
    TIME_ENTRIES = "time_entries"
    SCHEDULES = "schedules"
    AUDIT_LOGS = "audit_logs"
    IP_WHITELIST = "ip_whitelist"
    GEO_FENCES = "geo_fences"


class Operation(str, enum.Enum):
    READ = "read"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


_Predicate = Callable[[Principal, uuid.UUID | None], bool]


def _never(_principal: Principal, _owner_id: uuid.UUID | None) -> bool:
    return False


def _anyone(_principal: Principal, _owner_id: uuid.UUID | None) -> bool:
    return True


def _admin(principal: Principal, _owner_id: uuid.UUID | None) -> bool:
    return principal.is_admin


def _self(principal: Principal, owner_id: uuid.UUID | None) -> bool:
    return owner_id is not None and owner_id == principal.id


def _self_or_admin(principal: Principal, owner_id: uuid.UUID | None) -> bool:
    return principal.is_admin or _self(principal, owner_id)


# Operations missing from a table's entry are denied.
_RULES: dict[Resource, dict[Operation, _Predicate]] = {
    Resource.PROFILES: {
        Operation.READ: _self_or_admin,
        Operation.INSERT: _admin,
        Operation.UPDATE: _admin,
        Operation.DELETE: _never,
    },
    Resource.TIME_ENTRIES: {
        Operation.READ: _self_or_admin,
        # Self-only for every role, admins included.
        Operation.INSERT: _self,
        Operation.UPDATE: _never,
        Operation.DELETE: _never,
    },
    Resource.SCHEDULES: {
        Operation.READ: _self_or_admin,
        Operation.INSERT: _admin,
        Operation.UPDATE: _admin,
        Operation.DELETE: _admin,
    },
    Resource.AUDIT_LOGS: {
        Operation.READ: _admin,
    },
    Resource.IP_WHITELIST: {
        Operation.READ: _anyone,
        Operation.INSERT: _admin,
        Operation.UPDATE: _admin,
        Operation.DELETE: _admin,
    },
    Resource.GEO_FENCES: {
        Operation.READ: _anyone,
        Operation.INSERT: _admin,
        Operation.UPDATE: _admin,
        Operation.DELETE: _admin,
    },
}


def is_allowed(
    principal: Principal,
    resource: Resource,
    operation: Operation,
    *,
    owner_id: uuid.UUID | None = None,
) -> bool:
    """Return whether ``principal`` may perform ``operation`` on a row of ``resource``.

    ``owner_id`` is the profile id the row belongs to (or would belong to, for
    inserts); it only matters for the self-scoped rules.
    """
    predicate = _RULES.get(resource, {}).get(operation, _never)
    return predicate(principal, owner_id)


def ensure_allowed(
    principal: Principal,
    resource: Resource,
    operation: Operation,
    *,
    owner_id: uuid.UUID | None = None,
) -> None:
    if not is_allowed(principal, resource, operation, owner_id=owner_id):
        raise AccessDenied(f"Not permitted to {operation.value} {resource.value}.")
