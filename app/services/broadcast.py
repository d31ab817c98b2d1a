"""Server-sent-event fan-out of cache progress to connected browsers.

Each connected client owns a ``Channel`` (a bounded queue). Producers call
``broadcast``; a channel that is closed or whose queue is full is dropped on
the spot and the producer never sees an error. Delivery is at-most-once:
clients that reconnect read ``/api/cache-status`` to catch up.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel

from app.core.config import DatasetKind, settings
from app.core.logging import get_logger
from app.services.cache_store import KINDS, CacheStore

log = get_logger("broadcast")

CHANNEL_BUFFER = 100


class SSEEvent(BaseModel):
    event: str
    data: Any
    id: Optional[str] = None

    def format(self) -> str:
        """Format as SSE protocol string."""
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        lines.append(f"event: {self.event}")
        if isinstance(self.data, str):
            lines.append(f"data: {self.data}")
        else:
            lines.append(f"data: {json.dumps(self.data, default=str)}")
        return "\n".join(lines) + "\n\n"


class ChannelClosed(Exception):
    pass


class Channel:
    """One live client connection."""

    def __init__(self, maxsize: int = CHANNEL_BUFFER):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def send(self, event: SSEEvent) -> None:
        if self.closed:
            raise ChannelClosed("channel closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            raise ChannelClosed("client not keeping up") from exc

    async def receive(self, timeout: Optional[float] = None) -> Optional[SSEEvent]:
        """Next event, or None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self.closed = True


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProgressBroadcaster:
    def __init__(self, store: CacheStore, heartbeat_seconds: Optional[float] = None):
        self.store = store
        self.heartbeat_seconds = heartbeat_seconds or settings.SSE_HEARTBEAT_SECONDS
        self._channels: Set[Channel] = set()
        self._heartbeat: Optional[asyncio.Task] = None
        store.add_listener(self._on_store_event)

    @property
    def subscribers(self) -> int:
        return len(self._channels)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------
    def subscribe(self) -> Channel:
        channel = Channel()
        channel.send(SSEEvent(event="connected", data={"timestamp": _now_ms(), "message": "SSE connected"}))
        channel.send(SSEEvent(event="ai-status", data=self.status_payload()))
        self._channels.add(channel)
        log.debug(f"SSE client connected ({len(self._channels)} total)")
        return channel

    def unsubscribe(self, channel: Channel) -> None:
        channel.close()
        self._channels.discard(channel)
        log.debug(f"SSE client disconnected ({len(self._channels)} total)")

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------
    def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        """Push ``event`` to every live channel; returns how many received it."""
        if not self._channels:
            return 0

        message = SSEEvent(event=event, data=data)
        dead: List[Channel] = []
        for channel in self._channels:
            try:
                channel.send(message)
            except ChannelClosed:
                dead.append(channel)

        for channel in dead:
            channel.close()
            self._channels.discard(channel)
        if dead:
            log.debug(f"Pruned {len(dead)} dead SSE channel(s)")
        return len(self._channels)

    def broadcast_fee_update(self, kind: DatasetKind, delta: Dict[str, Any]) -> int:
        entities = delta.get("data") or []
        payload = {
            "timestamp": _now_ms(),
            "type": kind,
            "start": delta.get("start", 0),
            "data": [entity.model_dump(mode="json", by_alias=True) for entity in entities],
            "enhanced": delta.get("enhanced", 0),
            "total": delta.get("total", 0),
        }
        return self.broadcast("fee-update", payload)

    def broadcast_processing(self, kind: DatasetKind, processing: bool) -> int:
        label = kind.upper()
        payload = {
            "timestamp": _now_ms(),
            "type": kind,
            "processing": processing,
            "message": f"{label} AI processing started" if processing else f"{label} AI processing completed",
        }
        return self.broadcast("ai-processing", payload)

    def _on_store_event(self, event: str, kind: DatasetKind, data: Dict[str, Any]) -> None:
        if event == "fee-update":
            self.broadcast_fee_update(kind, data)
        elif event == "ai-processing":
            self.broadcast_processing(kind, bool(data.get("processing")))

    def status_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"timestamp": _now_ms()}
        for kind in KINDS:
            status = self.store.status(kind)
            payload[kind] = {
                "processing": status.is_processing,
                "enhanced": status.enhanced_count,
                "total": status.total_count,
                "progress": status.progress,
            }
        return payload

    # -------------------------------------------------------------------------
    # Heartbeat
    # -------------------------------------------------------------------------
    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            if self._channels:
                self.broadcast("ai-status", self.status_payload())

    def start(self) -> None:
        if self._heartbeat is None or self._heartbeat.done():
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="sse-heartbeat")

    async def stop(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None
        for channel in list(self._channels):
            self.unsubscribe(channel)
