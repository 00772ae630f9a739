from __future__ import annotations

import ipaddress
import uuid
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.access import Principal
from app.audit import AuditContext, bind_audit_context
from app.db import get_db
from app.errors import AccessDenied, Unauthenticated
from app.services.profiles import ensure_profile
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

# ip_address columns are VARCHAR(64); scoped IPv6 literals can run longer.
_MAX_IP_LENGTH = 64


def _parse_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parsed = str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None
    return parsed if len(parsed) <= _MAX_IP_LENGTH else None


def client_ip(request: Request) -> str | None:
    """Origin address of the request, or None when it is missing or not an IP literal."""
    header_name = get_settings().client_ip_header
    forwarded_for = request.headers.get(header_name) if header_name else None
    if forwarded_for:
        return _parse_ip(forwarded_for.split(",")[0])
    if request.client:
        return _parse_ip(request.client.host)
    return None


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise Unauthenticated("Token verification is not configured.")

    options: dict[str, Any] = {"require_sub": True, "require_exp": True}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except JWTError as exc:
        raise Unauthenticated() from exc

    try:
        uuid.UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise Unauthenticated("Token subject is invalid.") from exc

    return payload


def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Missing bearer token.")

    claims = decode_token(credentials.credentials)
    subject = uuid.UUID(str(claims["sub"]))
    email = claims.get("email")

    # Everything written on this request's session is attributed to the caller.
    bind_audit_context(db, AuditContext(actor_id=subject, ip_address=client_ip(request)))
    profile = ensure_profile(db, profile_id=subject, email=email if isinstance(email, str) else None)

    principal = Principal(id=profile.id, role=profile.role, email=profile.email)
    request.state.actor_id = str(principal.id)
    request.state.actor = principal.role.value
    return principal


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise AccessDenied()
    return principal
