"""Terminal protocol handler.

Receives connection lifecycle callbacks and inbound text frames from the
transport, keeps the SessionRegistry up to date and dispatches decoded
commands to the session's shell.

Per connection::

    open  -> TERMINAL_CONNECTED sent, session registered
    INIT  -> shell + workers started, TERMINAL_READY queued
    close -> session removed, workers stopped, shell closed
"""

from __future__ import annotations

import logging
from typing import Callable

from hostterm.config.settings import TerminalConfig
from hostterm.domain.models import (
    ConnectedFrame,
    ErrorFrame,
    InitCommand,
    InputCommand,
    MessageFrame,
    ProtocolError,
    ResizeCommand,
    parse_command,
)
from hostterm.endpoint.channel import Channel, ChannelClosedError
from hostterm.endpoint.environment import EnvironmentResolver
from hostterm.endpoint.shell import PtyShell, TerminalStartError
from hostterm.session.registry import SessionRegistry
from hostterm.session.session import TerminalSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 8192

SESSION_MISSING = "Terminal session does not exist or is closed"
SESSION_ENDED = "Terminal session has ended, please refresh the page to reconnect"


def default_shell_factory(config: TerminalConfig) -> Callable[[], PtyShell]:
    def factory() -> PtyShell:
        return PtyShell(
            EnvironmentResolver.from_config(config),
            init_timeout=config.init_timeout,
            use_simple_mode=config.use_simple_mode,
        )

    return factory


class TerminalProtocolHandler:
    """Transport-facing entry point for terminal sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: TerminalConfig | None = None,
        shell_factory: Callable[[], PtyShell] | None = None,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._registry = registry
        self._config = config or TerminalConfig()
        self._shell_factory = shell_factory or default_shell_factory(self._config)
        self._max_message_size = max_message_size

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def on_open(self, channel: Channel) -> TerminalSession:
        logger.info("Connection established: %s", channel.session_id)
        session = TerminalSession(channel, self._shell_factory(), self._config)
        await self._registry.register(session)
        try:
            await channel.send_text(ConnectedFrame(session_id=channel.session_id).to_json())
        except ChannelClosedError as e:
            logger.error("Failed to send connected frame: %s", e)
        return session

    async def on_message(self, channel: Channel, payload: str) -> None:
        session = await self._registry.get(channel.session_id)
        if session is None or not session.is_active:
            logger.warning("No active session for %s", channel.session_id)
            await self.send_error(channel, SESSION_MISSING)
            return

        if len(payload) > self._max_message_size:
            logger.warning("Dropping %d character frame from %s", len(payload), channel.session_id)
            await self.send_error(
                channel, f"Message too large ({len(payload)} > {self._max_message_size})"
            )
            return

        try:
            command = parse_command(payload)
        except ProtocolError as e:
            logger.warning("Rejected frame from %s: %s", channel.session_id, e)
            await self.send_error(channel, str(e))
            return

        logger.debug("Received %s from %s", command.type, channel.session_id)
        try:
            if isinstance(command, InitCommand):
                await self._handle_init(session, command)
            elif isinstance(command, InputCommand):
                await self._handle_input(session, command)
            elif isinstance(command, ResizeCommand):
                self._handle_resize(session, command)
        except Exception as e:
            logger.exception("Error handling %s", command.type)
            await self.send_error(channel, f"Failed to process command: {e}")

    async def _handle_init(self, session: TerminalSession, command: InitCommand) -> None:
        logger.info("Initializing terminal %dx%d", command.cols, command.rows)
        try:
            await session.start_terminal(command.cols, command.rows)
        except TerminalStartError as e:
            await self.send_error(session.channel, f"Failed to initialize terminal: {e}")

    async def _handle_input(self, session: TerminalSession, command: InputCommand) -> None:
        if not session.is_terminal_alive():
            logger.warning("Terminal is not alive, dropping input")
            await self.send_error(session.channel, SESSION_ENDED)
            return
        outcome = await session.write(command.data)
        if not outcome:
            await self.send_error(session.channel, f"Failed to send command: {outcome.reason}")

    def _handle_resize(self, session: TerminalSession, command: ResizeCommand) -> None:
        if not session.is_terminal_alive():
            logger.warning("Terminal is not alive, ignoring resize")
            return
        session.resize(command.cols, command.rows)

    async def on_close(self, channel: Channel, reason: str | None = None) -> None:
        if await self._registry.close(channel.session_id):
            logger.info("Connection closed: %s (%s)", channel.session_id, reason or "no reason")

    async def on_error(self, channel: Channel, exc: BaseException) -> None:
        logger.error("Transport error on %s: %s", channel.session_id, exc, exc_info=exc)
        await self._registry.close(channel.session_id)

    async def shutdown(self) -> None:
        logger.info("Closing all terminal sessions")
        await self._registry.close_all()

    async def send_error(self, channel: Channel, message: str) -> None:
        """Report an error as TERMINAL_ERROR plus a banner inside the terminal."""
        if not channel.is_open:
            return
        try:
            await channel.send_text(ErrorFrame(error=message).to_json())
            await channel.send_text(MessageFrame.error(message).to_json())
        except ChannelClosedError as e:
            logger.debug("Could not deliver error to %s: %s", channel.session_id, e)
