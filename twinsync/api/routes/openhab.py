"""API routes for the openHAB integration.

Connection settings, item discovery, mapping, manual sync, sync history
and the live item feed (SSE).
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import suppress
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

import twinsync.settings as _settings_mod
from twinsync.api.auth import require_permission
from twinsync.api.deps import get_owner_id
from twinsync.api.rate_limit import limiter
from twinsync.dal.connection_configs import ConnectionConfigStore
from twinsync.dal.mappings import SensorMappingRepository
from twinsync.dal.sync_logs import SyncLogRepository
from twinsync.openhab.client import OpenHABClient
from twinsync.openhab.models import ConnectionTestResult, Credential, ExternalItem, parse_credential
from twinsync.openhab.security import validate_external_url
from twinsync.storage import get_session
from twinsync.storage.entities import ConnectionConfig, SensorMapping, SyncLog, SyncType
from twinsync.sync.engine import SyncResult, get_sync_engine
from twinsync.sync.feed import LiveFeed
from twinsync.sync.mapper import ItemMapper, MapAllResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/openhab", tags=["openHAB"])

manage_integrations = require_permission("manage_integrations")


# ─── Schemas ──────────────────────────────────────────────────────────────────


class ConfigUpdate(BaseModel):
    """Request body for saving the connection. Omitted fields keep their value."""

    base_url: str = Field(max_length=500, description="openHAB base URL")
    credential: str | None = Field(
        None,
        description="API token, or user:password for Basic auth (omit to keep the stored one)",
    )
    poll_interval_seconds: int | None = Field(None, description="Clamped into 10..3600")
    enabled: bool | None = None
    clear_credential: bool = False


class ConfigResponse(BaseModel):
    """Connection settings (the credential is never returned)."""

    id: str
    owner_id: str
    base_url: str
    has_credential: bool
    poll_interval_seconds: int
    enabled: bool
    last_sync_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


class TestConnectionRequest(BaseModel):
    """Ad-hoc connection to test; falls back to the saved settings."""

    base_url: str | None = Field(None, max_length=500)
    credential: str | None = None


class ItemResponse(BaseModel):
    name: str
    type: str
    label: str
    state: str | None
    category: str | None
    mapped: bool = False


class CommandRequest(BaseModel):
    command: str = Field(min_length=1, max_length=255)


class ItemIn(BaseModel):
    """An item to map, as listed by GET /openhab/items."""

    name: str = Field(max_length=255)
    type: str = Field(max_length=100)
    label: str | None = Field(None, max_length=255)


class MapItemRequest(ItemIn):
    twin_id: str | None = None


class BulkMapRequest(BaseModel):
    items: list[ItemIn] = Field(min_length=1, max_length=500)
    twin_id: str | None = None


class MappingResponse(BaseModel):
    id: str
    config_id: str
    sensor_id: str
    external_item_name: str
    external_item_type: str | None
    external_item_label: str | None
    sync_enabled: bool
    last_value: str | None
    last_synced_at: datetime | None


class MappingUpdate(BaseModel):
    sync_enabled: bool


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    status: str
    items_synced: int | None
    items_total: int | None
    error_message: str | None
    created_at: datetime | None


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _serialize_config(config: ConnectionConfig) -> dict:
    return {
        "id": config.id,
        "owner_id": config.owner_id,
        "base_url": config.base_url,
        "has_credential": bool(config.credential_encrypted),
        "poll_interval_seconds": config.poll_interval_seconds,
        "enabled": config.enabled,
        "last_sync_at": config.last_sync_at,
        "created_at": config.created_at,
        "updated_at": config.updated_at,
    }


def _serialize_mapping(mapping: SensorMapping) -> dict:
    return {
        "id": mapping.id,
        "config_id": mapping.config_id,
        "sensor_id": mapping.sensor_id,
        "external_item_name": mapping.external_item_name,
        "external_item_type": mapping.external_item_type,
        "external_item_label": mapping.external_item_label,
        "sync_enabled": mapping.sync_enabled,
        "last_value": mapping.last_value,
        "last_synced_at": mapping.last_synced_at,
    }


def _serialize_log(log: SyncLog) -> dict:
    return {
        "id": log.id,
        "sync_type": log.sync_type,
        "status": log.status,
        "items_synced": log.items_synced,
        "items_total": log.items_total,
        "error_message": log.error_message,
        "created_at": log.created_at,
    }


def _serialize_item(item: ExternalItem, mapped: bool = False) -> dict:
    return {
        "name": item.name,
        "type": item.declared_type,
        "label": item.display_name,
        "state": item.state,
        "category": item.category,
        "mapped": mapped,
    }


def _to_item(item: ItemIn) -> ExternalItem:
    return ExternalItem(name=item.name, type=item.type, label=item.label)


def _make_client(base_url: str, credential: Credential) -> OpenHABClient:
    settings = _settings_mod.get_settings()
    return OpenHABClient(base_url, credential, timeout=settings.openhab_timeout_seconds)


async def _reconcile_scheduler() -> None:
    from twinsync.scheduler import SchedulerService

    scheduler = SchedulerService.get_instance()
    if scheduler is not None:
        await scheduler.sync_jobs()


# ─── Connection ───────────────────────────────────────────────────────────────


@router.get("/config", response_model=ConfigResponse)
async def get_config(owner_id: str = Depends(get_owner_id)):
    """Get the caller's openHAB connection settings."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        return _serialize_config(config)


@router.put(
    "/config",
    response_model=ConfigResponse,
    dependencies=[Depends(manage_integrations)],
)
async def save_config(body: ConfigUpdate, owner_id: str = Depends(get_owner_id)):
    """Create or update the caller's openHAB connection."""
    data = body.model_dump(exclude_unset=True, exclude_none=True)

    async with get_session() as session:
        config = await ConnectionConfigStore(session).save(owner_id, data)
        await session.commit()
        response = _serialize_config(config)

    await _reconcile_scheduler()
    return response


@router.post(
    "/test-connection",
    response_model=ConnectionTestResult,
    dependencies=[Depends(manage_integrations)],
)
@limiter.limit("10/minute")
async def test_connection(
    request: Request,
    body: TestConnectionRequest | None = None,
    owner_id: str = Depends(get_owner_id),
):
    """Check that openHAB answers with the given or saved settings."""
    if body is not None and body.base_url:
        settings = _settings_mod.get_settings()
        base_url = validate_external_url(
            body.base_url,
            allow_private_networks=settings.openhab_allow_private_networks,
        )
        credential = parse_credential(body.credential)
    else:
        async with get_session() as session:
            store = ConnectionConfigStore(session)
            config = await store.load(owner_id)
            base_url = config.base_url
            credential = store.credential_for(config)

    async with _make_client(base_url, credential) as client:
        return await client.test_connection()


# ─── Items ────────────────────────────────────────────────────────────────────


@router.get("/items", response_model=list[ItemResponse])
@limiter.limit("10/minute")
async def list_items(
    request: Request,
    sensor_only: bool = Query(True, description="Only numeric (Number*) items"),
    owner_id: str = Depends(get_owner_id),
):
    """List items on the caller's openHAB server, flagging mapped ones."""
    async with get_session() as session:
        store = ConnectionConfigStore(session)
        config = await store.load(owner_id)
        credential = store.credential_for(config)
        mapped = await SensorMappingRepository(session).mapped_item_names(config.id)

    async with _make_client(config.base_url, credential) as client:
        items = await client.list_items(sensor_only=sensor_only)
    return [_serialize_item(item, item.name in mapped) for item in items]


@router.post(
    "/items/{item_name}/command",
    dependencies=[Depends(manage_integrations)],
)
async def send_command(item_name: str, body: CommandRequest, owner_id: str = Depends(get_owner_id)):
    """Send a command to an openHAB item."""
    async with get_session() as session:
        store = ConnectionConfigStore(session)
        config = await store.load(owner_id)
        credential = store.credential_for(config)

    async with _make_client(config.base_url, credential) as client:
        await client.send_command(item_name, body.command)
    return {"success": True, "message": f"Command '{body.command}' sent to {item_name}"}


# ─── Mappings ─────────────────────────────────────────────────────────────────


@router.get("/mappings", response_model=list[MappingResponse])
async def list_mappings(owner_id: str = Depends(get_owner_id)):
    """List item -> sensor mappings of the caller's connection."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        mappings = await ItemMapper(session).list_mappings(config)
        return [_serialize_mapping(m) for m in mappings]


@router.post(
    "/mappings",
    response_model=MappingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(manage_integrations)],
)
async def map_item(body: MapItemRequest, owner_id: str = Depends(get_owner_id)):
    """Create a sensor for one item and map the item onto it."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        mapping = await ItemMapper(session).map_one(config, _to_item(body), twin_id=body.twin_id)
        await session.commit()
        return _serialize_mapping(mapping)


@router.post(
    "/mappings/bulk",
    response_model=MapAllResult,
    dependencies=[Depends(manage_integrations)],
)
async def map_items(body: BulkMapRequest, owner_id: str = Depends(get_owner_id)):
    """Map several items; failures are reported per item."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        result = await ItemMapper(session).map_all(
            config,
            [_to_item(item) for item in body.items],
            twin_id=body.twin_id,
        )
        await session.commit()
        return result


@router.patch(
    "/mappings/{mapping_id}",
    response_model=MappingResponse,
    dependencies=[Depends(manage_integrations)],
)
async def update_mapping(mapping_id: str, body: MappingUpdate, owner_id: str = Depends(get_owner_id)):
    """Include or exclude a mapping from sync."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        mapping = await ItemMapper(session).set_sync_enabled(config, mapping_id, body.sync_enabled)
        await session.commit()
        return _serialize_mapping(mapping)


# ─── Sync ─────────────────────────────────────────────────────────────────────


@router.post(
    "/sync",
    response_model=SyncResult,
    dependencies=[Depends(manage_integrations)],
)
@limiter.limit("5/minute")
async def trigger_sync(request: Request, owner_id: str = Depends(get_owner_id)):
    """Run a manual sync now and return its outcome."""
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
    return await get_sync_engine().sync_once(config, SyncType.MANUAL)


@router.get("/sync/history", response_model=list[SyncLogResponse])
async def sync_history(
    limit: int | None = Query(None, ge=1, le=500),
    owner_id: str = Depends(get_owner_id),
):
    """Most recent sync runs first."""
    limit = limit or _settings_mod.get_settings().sync_history_limit
    async with get_session() as session:
        config = await ConnectionConfigStore(session).load(owner_id)
        logs = await SyncLogRepository(session).list_recent(config.id, limit=limit)
        return [_serialize_log(log) for log in logs]


# ─── Live feed ────────────────────────────────────────────────────────────────


async def _live_events(
    base_url: str,
    credential: Credential,
    interval: int,
) -> AsyncGenerator[str, None]:
    """Stream the item list every time the live feed refreshes.

    The feed is stopped when the client disconnects.
    """
    updates: asyncio.Queue[str] = asyncio.Queue(maxsize=10)

    def on_update(feed: LiveFeed) -> None:
        payload = {
            "items": [_serialize_item(item) for item in feed.items],
            "last_updated": feed.last_updated,
        }
        with suppress(asyncio.QueueFull):
            updates.put_nowait(json.dumps(jsonable_encoder(payload)))

    client = _make_client(base_url, credential)
    try:
        async with LiveFeed(client.list_items, interval=interval, on_update=on_update) as feed:
            while True:
                try:
                    data = await asyncio.wait_for(updates.get(), timeout=interval + 1)
                except asyncio.TimeoutError:
                    if feed.last_error is not None:
                        error = json.dumps({"error": str(feed.last_error)})
                        yield f"event: error\ndata: {error}\n\n"
                    else:
                        yield ": keepalive\n\n"
                    continue
                yield f"data: {data}\n\n"
    except asyncio.CancelledError:
        pass
    finally:
        await client.close()


@router.get("/live")
async def live_feed(
    interval: int | None = Query(None, ge=1, le=3600, description="Refresh interval in seconds"),
    owner_id: str = Depends(get_owner_id),
) -> StreamingResponse:
    """SSE stream of the current item states (read-only, nothing persisted)."""
    async with get_session() as session:
        store = ConnectionConfigStore(session)
        config = await store.load(owner_id)
        credential = store.credential_for(config)

    interval = interval or _settings_mod.get_settings().live_feed_interval_seconds
    return StreamingResponse(
        _live_events(config.base_url, credential, interval),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
