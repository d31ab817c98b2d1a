"""Event routes - server-sent events for live enrichment progress."""

from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.api.deps import get_broadcaster
from app.services.broadcast import Channel, ProgressBroadcaster

router = APIRouter(prefix="/api", tags=["events"])


async def stream_events(
    broadcaster: ProgressBroadcaster,
    channel: Channel,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncIterator[str]:
    """Yield formatted events until the client leaves or the channel is pruned."""
    try:
        while True:
            event = await channel.receive(timeout=broadcaster.heartbeat_seconds)
            if event is not None:
                yield event.format()
                continue
            if channel.closed or await is_disconnected():
                break
    finally:
        broadcaster.unsubscribe(channel)


@router.get("/sse-updates")
async def sse_updates(request: Request, broadcaster: ProgressBroadcaster = Depends(get_broadcaster)):
    """
    Live progress stream (``text/event-stream``).

    Events: ``connected``, ``ai-status`` (also every heartbeat), ``fee-update``
    after each merged batch, ``ai-processing`` when a run starts or ends.
    Clients are expected to reconnect with backoff and re-read
    ``/api/cache-status`` after a drop.
    """
    channel = broadcaster.subscribe()

    return StreamingResponse(
        stream_events(broadcaster, channel, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
