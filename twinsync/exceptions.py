"""twinsync exception hierarchy.

Base exceptions for all application layers with correlation ID support.

Usage:
    from twinsync.exceptions import OpenHABConnectionError, ValidationError

    try:
        items = await client.list_items()
    except OpenHABConnectionError as e:
        logger.warning("openHAB unavailable (%s): %s", e.kind, e)
"""

import uuid
from enum import StrEnum


class TwinSyncError(Exception):
    """Base exception for all twinsync application errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class DALError(TwinSyncError):
    """Errors from data access layer operations."""

    pass


class NotFoundError(TwinSyncError):
    """A requested record does not exist."""

    pass


class ValidationError(TwinSyncError):
    """Errors from input validation (beyond Pydantic)."""

    def __init__(self, message: str, *, field: str | None = None, **kwargs):
        self.field = field
        super().__init__(message, **kwargs)


class InvalidItemNameError(ValidationError):
    """An openHAB item name contains characters outside the allowed set."""

    def __init__(self, item_name: str, **kwargs):
        self.item_name = item_name
        super().__init__(
            f"Invalid item name {item_name!r}. Only alphanumeric characters, "
            "underscores, hyphens, and colons are allowed.",
            field="item_name",
            **kwargs,
        )


class ConfigurationError(TwinSyncError):
    """Errors from application configuration."""

    pass


# ─── openHAB client ──────────────────────────────────────────────────────────


class ConnectionErrorKind(StrEnum):
    """Why a call to the openHAB server failed."""

    UNREACHABLE = "unreachable"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    BAD_RESPONSE = "bad_response"


class OpenHABConnectionError(TwinSyncError):
    """Errors from openHAB REST calls.

    Never retried by the client; the caller owns the retry policy.
    """

    kind: ConnectionErrorKind = ConnectionErrorKind.BAD_RESPONSE

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
        correlation_id: str | None = None,
    ):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message, correlation_id=correlation_id)


class UnreachableError(OpenHABConnectionError):
    """Host could not be reached (DNS, refused, reset)."""

    kind = ConnectionErrorKind.UNREACHABLE


class UnauthorizedError(OpenHABConnectionError):
    """The server rejected the supplied credential."""

    kind = ConnectionErrorKind.UNAUTHORIZED


class RequestTimeoutError(OpenHABConnectionError):
    """The server did not answer within the configured timeout."""

    kind = ConnectionErrorKind.TIMEOUT


class BadResponseError(OpenHABConnectionError):
    """Non-2xx status or a body that could not be parsed."""

    kind = ConnectionErrorKind.BAD_RESPONSE


# ─── Item mapping ────────────────────────────────────────────────────────────


class MapError(TwinSyncError):
    """Errors from mapping an external item onto a sensor."""

    def __init__(self, message: str, *, item_name: str | None = None, **kwargs):
        self.item_name = item_name
        super().__init__(message, **kwargs)


class DuplicateMappingError(MapError):
    """The item is already mapped under this connection."""

    pass


class SensorCreateFailedError(MapError):
    """The sensor row for a mapping could not be inserted."""

    pass


class MappingCreateFailedError(MapError):
    """The mapping row could not be inserted (its sensor was rolled back)."""

    pass


# ─── Sync ────────────────────────────────────────────────────────────────────


class SyncError(TwinSyncError):
    """A sync run failed as a whole.

    Recorded in the sync log and carried on the SyncResult; the
    scheduler never sees it raised.
    """

    def __init__(self, message: str, *, config_id: str | None = None, **kwargs):
        self.config_id = config_id
        super().__init__(message, **kwargs)
