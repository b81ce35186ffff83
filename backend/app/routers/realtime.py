"""
Server-Sent Events feed of store changes for bound terminals.

Postgres triggers (see `backend/db/migrations/001_init.sql`) publish on two
channels; every open stream LISTENs on both and forwards what concerns the
device's own store:

- `store_settings` -> `store.updated`  {store_id, settings}
- `device_deleted` -> `device.deleted` {id, store_id, device_token_hash}

Device deletions go to every terminal of the store. Each terminal decides
locally whether the deleted row was its own by comparing token hashes.
"""

import json
from typing import Optional

import psycopg
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ..config import settings
from ..db import DATABASE_URL
from ..deps import require_device
from ..logs import json_log

router = APIRouter(prefix="/realtime", tags=["realtime"])

CHANNEL_EVENTS = {
    "store_settings": "store.updated",
    "device_deleted": "device.deleted",
}


def format_sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def route_notification(channel: str, payload: str, store_id: str) -> Optional[tuple[str, dict]]:
    event = CHANNEL_EVENTS.get(channel)
    if not event:
        return None
    try:
        data = json.loads(payload or "")
    except ValueError:
        return None
    if not isinstance(data, dict) or str(data.get("store_id") or "") != str(store_id):
        return None
    if event == "store.updated":
        settings_json = data.get("settings")
        data = {"store_id": data["store_id"], "settings": settings_json if isinstance(settings_json, dict) else {}}
    return event, data


async def _event_stream(request: Request, store_id: str, device_id: str):
    json_log("info", "realtime.stream.open", store_id=store_id, device_id=device_id)
    try:
        async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as aconn:
            for channel in CHANNEL_EVENTS:
                await aconn.execute(f"LISTEN {channel}")
            yield ": connected\n\n"
            while not await request.is_disconnected():
                # notifies() returns after the timeout so idle streams still get a
                # keep-alive and disconnected clients are noticed.
                async for note in aconn.notifies(timeout=settings.realtime_keepalive_seconds):
                    routed = route_notification(note.channel, note.payload, store_id)
                    if routed:
                        yield format_sse(*routed)
                yield ": keepalive\n\n"
    finally:
        json_log("info", "realtime.stream.closed", store_id=store_id, device_id=device_id)


@router.get("/stream")
def stream(request: Request, device=Depends(require_device)):
    return StreamingResponse(
        _event_stream(request, str(device["store_id"]), str(device["device_id"])),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
