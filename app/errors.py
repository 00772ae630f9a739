from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationError(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=422, code="VALIDATION_ERROR", message=message)


class UniquenessViolation(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=409, code="UNIQUENESS_VIOLATION", message=message)


class AccessDenied(ApiError):
    def __init__(self, message: str = "Insufficient permissions."):
        super().__init__(status_code=403, code="ACCESS_DENIED", message=message)


class LocationDenied(ApiError):
    """Clock events from outside the allowlisted networks and geo fences."""

    def __init__(self, message: str = "Clock events are not permitted from this location."):
        super().__init__(status_code=403, code="LOCATION_DENIED", message=message)


class NotFound(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=404, code="NOT_FOUND", message=message)


class Unauthenticated(ApiError):
    def __init__(self, message: str = "Token is invalid."):
        super().__init__(status_code=401, code="INVALID_TOKEN", message=message)


class PersistenceFailure(ApiError):
    def __init__(self, message: str = "The change could not be saved. Please try again."):
        super().__init__(status_code=503, code="PERSISTENCE_FAILURE", message=message)


class AuditWriteFailure(PersistenceFailure):
    """Raised inside a flush when the audit rows cannot be written.

    The enclosing transaction is rolled back, so the audited change never
    takes effect.
    """


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
