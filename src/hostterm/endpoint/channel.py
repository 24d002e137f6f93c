"""Outbound message channel used by the session pipeline.

The session layer only needs to send a text frame and to know whether
the connection is still open. :class:`WebSocketChannel` provides that on
top of a FastAPI/Starlette WebSocket; tests use in-memory channels.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ChannelClosedError(Exception):
    """Raised when sending on a channel that is closed or closing."""


class Channel(ABC):
    """Abstract text-frame channel to one browser terminal."""

    @property
    @abstractmethod
    def session_id(self) -> str:
        """Opaque identity of the connection."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame.

        Raises:
            ChannelClosedError: If the channel is closed or closing.
        """
        ...


class WebSocketChannel(Channel):
    """Channel backed by an accepted FastAPI WebSocket.

    Sends are serialized, because the protocol handler and the output
    sender both write to the same socket.
    """

    def __init__(self, websocket: WebSocket, session_id: str | None = None) -> None:
        self._websocket = websocket
        self._session_id = session_id or uuid.uuid4().hex
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_open(self) -> bool:
        if self._closed:
            return False
        ws = self._websocket
        return (
            ws.client_state == WebSocketState.CONNECTED
            and ws.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ChannelClosedError(f"Channel {self._session_id} is closed")
        async with self._send_lock:
            try:
                await self._websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self._closed = True
                raise ChannelClosedError(f"Channel {self._session_id} closed while sending: {e}") from e
