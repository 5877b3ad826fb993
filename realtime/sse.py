from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from health.health import HealthBoard
from realtime.bus import Event, EventBus


router = APIRouter()

HEARTBEAT_S = 15


def format_sse(event: Event) -> str:
    data = json.dumps(event.data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event.type}\ndata: {data}\n\n"


@router.get("/sse")
async def sse(request: Request) -> StreamingResponse:
    bus: EventBus = request.app.state.bus
    health: HealthBoard = request.app.state.health
    queue = await bus.subscribe()

    async def event_stream():
        try:
            # Late subscribers get the most recent cycle straight away.
            if health.last_cycle is not None:
                yield format_sse(Event(type="alerts.cycle", data=health.last_cycle))
            else:
                yield format_sse(Event(type="heartbeat", data={}))
            while True:
                if await request.is_disconnected():
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_S)
                except TimeoutError:
                    ts = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
                    yield format_sse(Event(type="heartbeat", data={"ts": ts}))
                    continue
                yield format_sse(event)
        finally:
            await bus.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
