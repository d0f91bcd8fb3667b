# devbox/lib/channels.py
"""
Push channels for status subscribers.

Each channel exposes ``async send(event: dict)``; a send that raises gets the
channel dropped from the fan-out by the status registry.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import WebSocket


class WebSocketChannel:
    """Forwards events to one WebSocket connection as JSON."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        await self.websocket.send_json(event)


class ChannelClosed(Exception):
    pass


class QueueChannel:
    """
    Buffers events for a Server-Sent Events response.

    A full queue means the client stopped reading; the channel closes itself
    so the registry drops it on the next send.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosed("channel closed")
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.closed = True
            raise ChannelClosed("subscriber is not draining events")

    def close(self) -> None:
        self.closed = True

    async def events(self, keepalive: Optional[float] = 15.0) -> AsyncIterator[str]:
        """Yield SSE frames; a comment line is sent when idle to keep proxies open."""
        while not self.closed:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event)


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"
