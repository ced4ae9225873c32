"""Action-style endpoint for the openHAB sync function.

``POST /functions/openhab-sync`` takes ``{"action": ...}`` and answers
with ``{success, message, ...}`` or ``{error}`` envelopes, for callers
such as cron jobs and dashboards that use a single invocable endpoint.

Actions:
- test-connection (openhabUrl, apiToken)
- fetch-items
- sync-data
- send-command (itemName, command)
- auto-sync (config_id): rate limited to one run per 90% of the poll interval
"""

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

import twinsync.settings as _settings_mod
from twinsync.api.auth import require_permission
from twinsync.api.deps import get_owner_id
from twinsync.api.errors import http_status_for
from twinsync.api.rate_limit import limiter
from twinsync.dal.connection_configs import ConnectionConfigStore
from twinsync.exceptions import TwinSyncError
from twinsync.openhab.client import OpenHABClient
from twinsync.openhab.models import Credential, parse_credential
from twinsync.openhab.security import validate_external_url
from twinsync.storage import get_session
from twinsync.storage.entities import SyncType
from twinsync.sync.engine import SyncStatus, get_sync_engine, is_due, next_sync_allowed_at

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["Functions"])


class FunctionRequest(BaseModel):
    """Action envelope. Extra keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    action: str
    openhabUrl: str | None = None  # noqa: N815
    apiToken: str | None = None  # noqa: N815
    itemName: str | None = None  # noqa: N815
    command: str | int | float | None = None
    config_id: str | None = None


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _client(base_url: str, credential: Credential) -> OpenHABClient:
    settings = _settings_mod.get_settings()
    return OpenHABClient(base_url, credential, timeout=settings.openhab_timeout_seconds)


@router.post("/openhab-sync", dependencies=[Depends(require_permission("manage_integrations"))])
@limiter.limit("30/minute")
async def openhab_sync(
    request: Request,
    body: FunctionRequest,
    owner_id: str = Depends(get_owner_id),
) -> JSONResponse:
    """Dispatch one openHAB action."""
    handlers = {
        "test-connection": _test_connection,
        "fetch-items": _fetch_items,
        "sync-data": _sync_data,
        "send-command": _send_command,
        "auto-sync": _auto_sync,
    }
    handler = handlers.get(body.action)
    if handler is None:
        return _error("Invalid action", 400)

    try:
        return await handler(body, owner_id)
    except TwinSyncError as e:
        status_code = http_status_for(e)
        logger.warning("openhab-sync action %s failed (%d): %s", body.action, status_code, e)
        return _error(str(e), status_code)


async def _test_connection(body: FunctionRequest, owner_id: str) -> JSONResponse:
    if body.openhabUrl:
        base_url = validate_external_url(
            body.openhabUrl,
            allow_private_networks=_settings_mod.get_settings().openhab_allow_private_networks,
        )
        credential = parse_credential(body.apiToken)
    else:
        async with get_session() as session:
            store = ConnectionConfigStore(session)
            config = await store.load(owner_id)
            base_url, credential = config.base_url, store.credential_for(config)

    async with _client(base_url, credential) as client:
        result = await client.test_connection()

    if not result.success:
        return JSONResponse(status_code=400, content={"success": False, "error": result.message})
    return JSONResponse(
        content={"success": True, "itemCount": result.item_count, "message": result.message}
    )


async def _fetch_items(body: FunctionRequest, owner_id: str) -> JSONResponse:
    async with get_session() as session:
        store = ConnectionConfigStore(session)
        config = await store.load(owner_id)
        credential = store.credential_for(config)

    async with _client(config.base_url, credential) as client:
        items = await client.list_items(sensor_only=True)

    return JSONResponse(
        content={
            "items": [
                {
                    "name": item.name,
                    "type": item.declared_type,
                    "label": item.display_name,
                    "state": item.state,
                    "category": item.category,
                }
                for item in items
            ]
        }
    )


def _sync_response(result) -> JSONResponse:
    if result.status == SyncStatus.DISABLED:
        return _error("OpenHAB sync is not enabled", 400)
    if result.status == SyncStatus.NOOP:
        return _error(result.message, 400)
    if result.status == SyncStatus.SKIPPED:
        return _error(result.message, 409)
    if result.status == SyncStatus.ERROR:
        return _error(result.message, 500)

    content: dict[str, Any] = {
        "success": True,
        "status": result.status,
        "synced": result.synced,
        "total": result.total,
        "message": result.message,
    }
    if result.errors:
        content["errors"] = result.errors
    return JSONResponse(content=jsonable_encoder(content))


async def _sync_data(body: FunctionRequest, owner_id: str) -> JSONResponse:
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
    return _sync_response(await get_sync_engine().sync_once(config, SyncType.MANUAL))


async def _send_command(body: FunctionRequest, owner_id: str) -> JSONResponse:
    if not body.itemName or body.command is None or body.command == "":
        return _error("itemName and command are required", 400)
    command = str(body.command)

    async with get_session() as session:
        store = ConnectionConfigStore(session)
        config = await store.load(owner_id)
        credential = store.credential_for(config)

    async with _client(config.base_url, credential) as client:
        await client.send_command(body.itemName, command)

    return JSONResponse(
        content={"success": True, "message": f"Command '{command}' sent to {body.itemName}"}
    )


async def _auto_sync(body: FunctionRequest, owner_id: str) -> JSONResponse:
    if not body.config_id:
        return _error("Missing config_id", 400)
    try:
        uuid.UUID(body.config_id)
    except ValueError:
        return _error("Invalid config_id format", 400)

    async with get_session() as session:
        config = await ConnectionConfigStore(session).get_by_id(body.config_id)

    if config is None or not config.enabled:
        return _error("Invalid or disabled configuration", 403)

    if not is_due(config):
        allowed_at = next_sync_allowed_at(config)
        logger.info("Auto-sync for %s rate limited until %s", config.id, allowed_at)
        return _error(
            "Rate limited: Sync interval not reached",
            429,
            next_sync_allowed_at=allowed_at.isoformat() if allowed_at else None,
        )

    return _sync_response(await get_sync_engine().sync_once(config, SyncType.AUTOMATIC))
