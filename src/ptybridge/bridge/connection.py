"""Client connection seen by a terminal session.

The session only needs to receive frames, send text and close, so it
talks to the ``Connection`` protocol. ``WebSocketConnection`` adapts a
FastAPI WebSocket to it and maps Starlette's disconnect signals and
transport failures onto ``ConnectionClosed`` and ``TransportError``.
"""

from __future__ import annotations

import logging
from typing import Protocol

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ptybridge.bridge.errors import ConnectionClosed, TransportError

logger = logging.getLogger(__name__)

# RFC 6455 close codes
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011


class Connection(Protocol):
    @property
    def peer(self) -> str: ...

    async def receive(self) -> str | bytes:
        """Return the next client frame; raise ConnectionClosed at the end."""
        ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = CLOSE_NORMAL) -> None: ...


class WebSocketConnection:
    """``Connection`` over an accepted FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        client = websocket.client
        self._peer = f"{client.host}:{client.port}" if client else "unknown"

    @property
    def peer(self) -> str:
        return self._peer

    async def receive(self) -> str | bytes:
        try:
            message = await self._websocket.receive()
        except RuntimeError as e:
            # Starlette raises this once a disconnect was already received.
            raise ConnectionClosed(str(e)) from e
        except OSError as e:
            raise TransportError(f"Receive from {self._peer} failed: {e}") from e

        if message["type"] == "websocket.disconnect":
            raise ConnectionClosed(f"Client {self._peer} disconnected ({message.get('code')})")
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except WebSocketDisconnect as e:
            raise ConnectionClosed(f"Client {self._peer} disconnected ({e.code})") from e
        except (RuntimeError, OSError) as e:
            raise TransportError(f"Send to {self._peer} failed: {e}") from e

    async def close(self, code: int = CLOSE_NORMAL) -> None:
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if self._websocket.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._websocket.close(code=code)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug("Closing connection to %s failed: %s", self._peer, e)
