"""openHAB REST integration."""

from twinsync.openhab.client import OpenHABClient
from twinsync.openhab.models import (
    BasicCredential,
    BearerCredential,
    ConnectionTestResult,
    Credential,
    ExternalItem,
    NoCredential,
    is_sentinel_state,
    parse_credential,
    parse_numeric_state,
)

__all__ = [
    "BasicCredential",
    "BearerCredential",
    "ConnectionTestResult",
    "Credential",
    "ExternalItem",
    "NoCredential",
    "OpenHABClient",
    "is_sentinel_state",
    "parse_credential",
    "parse_numeric_state",
]
