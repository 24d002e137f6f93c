"""One terminal session: a channel, its shell and the two stream workers."""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, Field

from hostterm.config.settings import TerminalConfig
from hostterm.domain.models import ExecutionMode, Outcome, ProcessState, ReadyFrame
from hostterm.endpoint.channel import Channel
from hostterm.endpoint.shell import PtyShell
from hostterm.streaming.frame_queue import FrameQueue
from hostterm.streaming.pump import OutputPump
from hostterm.streaming.sender import OutputSender

logger = logging.getLogger(__name__)

WORKER_STOP_TIMEOUT = 1.0


class SessionInfo(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    active: bool
    state: ProcessState
    mode: ExecutionMode
    status: str


class TerminalSession:
    """Owns everything belonging to one connection.

    The pump and sender run as tasks that are only ever cancelled together;
    ``close`` stops both before the shell is closed.
    """

    def __init__(
        self,
        channel: Channel,
        shell: PtyShell,
        config: TerminalConfig | None = None,
    ) -> None:
        self._channel = channel
        self._shell = shell
        self._config = config or TerminalConfig()
        self._queue = FrameQueue(self._config.queue_capacity)
        self._tasks: list[asyncio.Task[None]] = []
        self._active = True

    @property
    def session_id(self) -> str:
        return self._channel.session_id

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def shell(self) -> PtyShell:
        return self._shell

    @property
    def queue(self) -> FrameQueue:
        return self._queue

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def workers_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def is_terminal_alive(self) -> bool:
        return self._shell.is_alive()

    async def start_terminal(self, cols: int, rows: int) -> None:
        """Start the shell and its stream workers.

        Raises:
            TerminalStartError: If the shell cannot be started.
        """
        if self.workers_running:
            logger.warning("Terminal already started for session %s", self.session_id)
            return

        await self._shell.start(cols, rows)

        # READY travels through the queue so it lands in the first batch.
        self._queue.push(ReadyFrame().to_json())
        config = self._config
        pump = OutputPump(self._shell, self._queue, self._channel, buffer_size=config.buffer_size)
        sender = OutputSender(
            self._queue,
            self._channel,
            buffer_size=config.buffer_size,
            flush_interval=config.flush_interval,
        )
        self._tasks = [
            asyncio.create_task(pump.run(), name=f"terminal-reader-{self.session_id}"),
            asyncio.create_task(sender.run(), name=f"terminal-sender-{self.session_id}"),
        ]
        logger.info("Terminal session started: %s", self.session_id)

    async def write(self, data: str) -> Outcome:
        return await self._shell.write(data)

    def resize(self, cols: int, rows: int) -> Outcome:
        return self._shell.resize(cols, rows)

    async def close(self) -> None:
        """Stop both workers, then the shell. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        await self._stop_workers()
        await self._shell.close()
        logger.debug("Session resources released: %s", self.session_id)

    async def _stop_workers(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            done, _ = await asyncio.wait({task}, timeout=WORKER_STOP_TIMEOUT)
            if not done:
                logger.warning("Worker %s did not stop in time, abandoning it", task.get_name())
        self._tasks = []

    def describe(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            active=self._active,
            state=self._shell.state,
            mode=self._shell.mode,
            status=self._shell.status(),
        )
