"""HTTP status codes for application errors."""

from twinsync.exceptions import (
    DuplicateMappingError,
    NotFoundError,
    OpenHABConnectionError,
    TwinSyncError,
    UnauthorizedError,
    ValidationError,
)


def http_status_for(exc: TwinSyncError) -> int:
    """Status code an application error is reported with."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, DuplicateMappingError):
        return 409
    if isinstance(exc, UnauthorizedError):
        return 401
    if isinstance(exc, OpenHABConnectionError):
        return 502
    return 500
