"""FastAPI server exposing the terminal WebSocket.

    WS   /terminal   <- TERMINAL_INIT / TERMINAL_COMMAND / TERMINAL_RESIZE
                     -> TERMINAL_CONNECTED, then TERMINAL_BATCH frames
    GET  /health     -> {"status": "ok", "sessions": N}
    GET  /sessions   -> [{"sessionId": ..., "state": ..., "mode": ..., "status": ...}]
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from hostterm import __version__
from hostterm.config.settings import Settings
from hostterm.endpoint.channel import WebSocketChannel
from hostterm.session.handler import TerminalProtocolHandler
from hostterm.session.registry import SessionRegistry
from hostterm.session.session import SessionInfo

logger = logging.getLogger(__name__)


class EndpointStatus(BaseModel):
    status: str = "ok"
    sessions: int = 0


def create_app(
    settings: Settings | None = None,
    registry: SessionRegistry | None = None,
    handler: TerminalProtocolHandler | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()
    if registry is None:
        registry = handler.registry if handler is not None else SessionRegistry()
    if handler is None:
        handler = TerminalProtocolHandler(
            registry,
            settings.terminal,
            max_message_size=settings.server.max_message_size,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Terminal endpoint started (websocket path %s)", settings.server.websocket_path)
        yield
        # Shutdown
        await app.state.handler.shutdown()
        logger.info("Terminal endpoint stopped")

    app = FastAPI(
        title="hostterm",
        description="Browser terminal bridge to a local or host shell",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.handler = handler

    @app.get("/health")
    async def health_check() -> EndpointStatus:
        return EndpointStatus(status="ok", sessions=len(app.state.registry))

    @app.get("/sessions")
    async def list_sessions() -> list[SessionInfo]:
        return [s.describe() for s in app.state.registry.snapshot()]

    @app.websocket(settings.server.websocket_path)
    async def terminal_websocket(websocket: WebSocket) -> None:
        await websocket.accept()
        channel = WebSocketChannel(websocket)
        h: TerminalProtocolHandler = app.state.handler
        await h.on_open(channel)
        reason = None
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    reason = f"code {message.get('code')}"
                    break
                payload = message.get("text")
                if payload is None:
                    payload = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await h.on_message(channel, payload)
        except WebSocketDisconnect as e:
            reason = f"code {e.code}"
        except Exception as e:
            await h.on_error(channel, e)
        finally:
            channel.mark_closed()
            await h.on_close(channel, reason)

    return app

