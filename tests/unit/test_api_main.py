"""Unit tests for app wiring: API key auth, roles, middleware."""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic import SecretStr

from twinsync.api.auth import ROLE_PERMISSIONS, RolePermissionChecker, has_permission, set_permission_checker
from twinsync.api.main import _get_allowed_origins
from twinsync.api.rate_limit import MAX_REQUEST_BODY_BYTES
from twinsync.settings import Settings


@pytest.fixture
def with_api_key(mock_settings):
    mock_settings.api_key = SecretStr("s3cret")
    return mock_settings


@pytest.mark.asyncio
class TestApiKey:
    async def test_health_is_exempt(self, async_client, with_api_key):
        response = await async_client.get("/api/v1/health")

        assert response.status_code == 200

    async def test_missing_key_rejected(self, async_client, with_api_key):
        response = await async_client.get("/api/v1/realtime/events")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "ApiKey"
        assert response.json()["error"]["message"] == "Invalid or missing API key."

    async def test_header_key_accepted(self, async_client, with_api_key):
        response = await async_client.get("/api/v1/realtime/events", headers={"X-API-Key": "s3cret"})

        assert response.status_code == 200

    async def test_query_key_accepted(self, async_client, with_api_key):
        response = await async_client.get("/api/v1/realtime/events", params={"api_key": "s3cret"})

        assert response.status_code == 200

    async def test_wrong_key_rejected(self, async_client, with_api_key):
        response = await async_client.get("/api/v1/realtime/events", headers={"X-API-Key": "nope"})

        assert response.status_code == 401

    async def test_production_without_key_rejects(self, async_client, mock_settings):
        mock_settings.environment = "production"

        response = await async_client.get("/api/v1/realtime/events")

        assert response.status_code == 401
        assert "not configured" in response.json()["error"]["message"]


class TestPermissions:
    def test_owner_and_admin_have_all_actions(self):
        for role in ("owner", "admin"):
            assert has_permission(role, "manage_integrations")
            assert has_permission(role, "manage_assets")
            assert has_permission(role, "view_admin")

    def test_member_has_none(self):
        assert not has_permission("member", "manage_integrations")
        assert not has_permission("member", "view_admin")

    def test_unknown_role_has_none(self):
        assert not has_permission("guest", "manage_integrations")

    def test_checker_can_be_replaced(self):
        try:
            set_permission_checker(RolePermissionChecker({"member": frozenset({"manage_assets"})}))
            assert has_permission("member", "manage_assets")
            assert not has_permission("owner", "manage_assets")
        finally:
            set_permission_checker(RolePermissionChecker(ROLE_PERMISSIONS))


@pytest.mark.asyncio
class TestMiddleware:
    async def test_security_headers(self, async_client):
        response = await async_client.get("/api/v1/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"

    async def test_correlation_id_propagated(self, async_client):
        response = await async_client.get("/api/v1/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"

    async def test_correlation_id_generated(self, async_client):
        response = await async_client.get("/api/v1/health")

        assert response.headers["X-Correlation-ID"]

    async def test_oversized_body_rejected(self, async_client):
        with patch("twinsync.api.routes.openhab.ConnectionConfigStore") as store_cls:
            store_cls.return_value.save = AsyncMock()
            response = await async_client.put(
                "/api/v1/openhab/config",
                content=b"x" * (MAX_REQUEST_BODY_BYTES + 1),
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 413
        assert response.json()["error"]["type"] == "request_too_large"
        store_cls.return_value.save.assert_not_called()


class TestAllowedOrigins:
    def test_explicit_list(self):
        settings = Settings(allowed_origins="https://a.example, https://b.example")
        assert _get_allowed_origins(settings) == ["https://a.example", "https://b.example"]

    def test_permissive_in_development(self):
        assert _get_allowed_origins(Settings(environment="development")) == ["*"]

    def test_closed_in_production(self):
        assert _get_allowed_origins(Settings(environment="production")) == []
