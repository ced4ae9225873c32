"""Realtime change stream (SSE).

Clients subscribe to committed changes of the tracked tables. Each event
carries ``id: <seq>``; a reconnecting client sends Last-Event-ID (or
``last_seq``) and receives only the events it has not seen.
"""

import asyncio
import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Header, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from twinsync.exceptions import ValidationError
from twinsync.realtime import TRACKED_TABLES, ChangeEvent, get_broadcaster

router = APIRouter(prefix="/realtime", tags=["Realtime"])

KEEPALIVE_SECONDS = 15.0


def _parse_tables(tables: str | None) -> set[str] | None:
    if not tables:
        return None
    requested = {t.strip() for t in tables.split(",") if t.strip()}
    unknown = requested - TRACKED_TABLES
    if unknown:
        raise ValidationError(
            f"Unknown tables: {', '.join(sorted(unknown))}. "
            f"Available: {', '.join(sorted(TRACKED_TABLES))}",
            field="tables",
        )
    return requested


def _parse_last_seq(last_seq: int | None, last_event_id: str | None) -> int | None:
    if last_seq is not None:
        return last_seq
    if last_event_id and last_event_id.strip().isdigit():
        return int(last_event_id.strip())
    return None


def _format_event(event: ChangeEvent) -> str:
    data = json.dumps(jsonable_encoder(event.to_dict()))
    return f"id: {event.seq}\nevent: {event.table}\ndata: {data}\n\n"


async def _stream(tables: set[str] | None, last_seq: int | None) -> AsyncGenerator[str, None]:
    async with get_broadcaster().subscribe(tables, last_seq=last_seq) as sub:
        try:
            if sub.gap:
                yield f"event: resync\ndata: {json.dumps({'last_seq': sub.last_seq})}\n\n"
            while True:
                event = await sub.get(timeout=KEEPALIVE_SECONDS)
                if event is not None:
                    yield _format_event(event)
                    continue
                if sub.overflowed:
                    yield f"event: resync\ndata: {json.dumps({'last_seq': sub.last_seq})}\n\n"
                    break
                if sub.closed:
                    break
                yield ": keepalive\n\n"
        except asyncio.CancelledError:
            pass


@router.get("/stream")
async def change_stream(
    tables: str | None = Query(None, description="Comma-separated table names (default: all)"),
    last_seq: int | None = Query(None, ge=0),
    last_event_id: str | None = Header(None),
) -> StreamingResponse:
    """SSE endpoint for committed row changes."""
    return StreamingResponse(
        _stream(_parse_tables(tables), _parse_last_seq(last_seq, last_event_id)),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/events")
async def recent_events(
    since: int = Query(0, ge=0, description="Return events with a greater sequence number"),
    tables: str | None = Query(None),
) -> dict:
    """Polling fallback: buffered events newer than ``since``."""
    broadcaster = get_broadcaster()
    events = broadcaster.events_since(since, _parse_tables(tables))
    return jsonable_encoder(
        {
            "latest_seq": broadcaster.latest_seq,
            "events": [event.to_dict() for event in events],
        }
    )
