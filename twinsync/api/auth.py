"""API key authentication and role checks.

Authentication (X-API-Key header or api_key query parameter) is disabled
when no API_KEY is configured, except in production where requests are
rejected instead.

Authorization is a capability check ``has_permission(role, action)``;
the caller's role comes from the X-User-Role header.
"""

import secrets
from typing import Literal, Protocol

from fastapi import Header, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader, APIKeyQuery

# Import module (not function) so monkeypatching get_settings in tests works
import twinsync.settings as _settings_mod

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
api_key_query = APIKeyQuery(name="api_key", auto_error=False)

EXEMPT_ROUTES = {
    "/api/v1/health",
    "/api/v1/ready",
}

Action = Literal["view_admin", "manage_assets", "manage_integrations"]

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "owner": frozenset({"view_admin", "manage_assets", "manage_integrations"}),
    "admin": frozenset({"view_admin", "manage_assets", "manage_integrations"}),
    "member": frozenset(),
}


class PermissionChecker(Protocol):
    def has_permission(self, role: str, action: str) -> bool: ...


class RolePermissionChecker:
    """Static role -> permitted actions table."""

    def __init__(self, permissions: dict[str, frozenset[str]] | None = None):
        self.permissions = permissions or ROLE_PERMISSIONS

    def has_permission(self, role: str, action: str) -> bool:
        return action in self.permissions.get(role, frozenset())


_permission_checker: PermissionChecker = RolePermissionChecker()


def set_permission_checker(checker: PermissionChecker) -> None:
    """Swap in an external authorization provider."""
    global _permission_checker
    _permission_checker = checker


def has_permission(role: str, action: str) -> bool:
    return _permission_checker.has_permission(role, action)


async def verify_api_key(
    request: Request,
    header_key: str | None = Security(api_key_header),
    query_key: str | None = Security(api_key_query),
) -> str:
    """Verify the API key for every non-exempt route.

    Raises:
        HTTPException: 401 Unauthorized if authentication fails
    """
    if request.url.path in EXEMPT_ROUTES:
        return ""

    settings = _settings_mod.get_settings()
    expected = settings.api_key.get_secret_value()

    if not expected:
        if settings.environment == "production":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication is not configured. Set API_KEY.",
            )
        return ""

    provided = header_key or query_key
    if provided and secrets.compare_digest(provided, expected):
        return "api_key"

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key.",
        headers={"WWW-Authenticate": "ApiKey"},
    )


def get_user_role(x_user_role: str | None = Header(default=None)) -> str:
    return x_user_role or _settings_mod.get_settings().default_user_role


def require_permission(action: Action):
    """Dependency factory: 403 unless the caller's role permits action."""

    def _check(x_user_role: str | None = Header(default=None)) -> str:
        role = get_user_role(x_user_role)
        if not has_permission(role, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{role}' is not allowed to {action.replace('_', ' ')}.",
            )
        return role

    return _check
