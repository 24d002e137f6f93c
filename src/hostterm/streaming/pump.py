"""Reader worker: terminal process output to frames.

Reads raw output from the pty, wraps each chunk as a TERMINAL_OUTPUT
frame and pushes it into the session's FrameQueue. While the terminal is
silent a watchdog nudges it with a newline, and warns the client once if
nothing at all has been printed shortly after start.
"""

from __future__ import annotations

import asyncio
import codecs
import logging

from hostterm.domain.models import Frame, MessageFrame, OutputFrame
from hostterm.endpoint.channel import Channel
from hostterm.endpoint.shell import PtyShell
from hostterm.streaming.frame_queue import FrameQueue

logger = logging.getLogger(__name__)

SPAWN_WAIT_ATTEMPTS = 50
SPAWN_WAIT_INTERVAL = 0.1
READ_TIMEOUT = 0.1
IDLE_SLEEP = 0.05
# Idle iterations before a bare newline is sent to provoke a prompt.
NUDGE_AFTER_IDLE = 100
# Seconds without any output before the client is warned.
SILENCE_WARNING_AFTER = 5.0
# The pty reports EOF slightly before the process can be reaped.
EXIT_WAIT_ATTEMPTS = 10
EXIT_WAIT_INTERVAL = 0.05
# Cap on chunks forwarded after exit, in case a leftover child keeps writing.
DRAIN_MAX_CHUNKS = 256

SILENCE_WARNING = "Warning: no terminal output received, tried to wake the terminal..."
SILENCE_HINT = "Hint: try pressing Enter or typing a command"


class OutputPump:
    """Streams one terminal's output into its FrameQueue."""

    def __init__(
        self,
        shell: PtyShell,
        queue: FrameQueue,
        channel: Channel,
        buffer_size: int = 4096,
        read_timeout: float = READ_TIMEOUT,
        idle_sleep: float = IDLE_SLEEP,
        nudge_after_idle: int = NUDGE_AFTER_IDLE,
        silence_warning_after: float = SILENCE_WARNING_AFTER,
        spawn_wait_attempts: int = SPAWN_WAIT_ATTEMPTS,
        spawn_wait_interval: float = SPAWN_WAIT_INTERVAL,
    ) -> None:
        self._shell = shell
        self._queue = queue
        self._channel = channel
        self._buffer_size = buffer_size
        self._read_timeout = read_timeout
        self._idle_sleep = idle_sleep
        self._nudge_after_idle = nudge_after_idle
        self._silence_warning_after = silence_warning_after
        self._spawn_wait_attempts = spawn_wait_attempts
        self._spawn_wait_interval = spawn_wait_interval
        self._silence_reported = False

    def _push(self, frame: Frame) -> None:
        self._queue.push(frame.to_json())

    async def run(self) -> None:
        """Worker entry point; returns when output ends or on cancellation."""
        session_id = self._channel.session_id
        try:
            if not await self._wait_for_process():
                logger.error("Timed out waiting for terminal process: %s", session_id)
                self._push(MessageFrame.error("Timed out waiting for the terminal process to start"))
                return

            self._push(MessageFrame.info(f"Terminal process started, PID: {self._shell.pid}"))
            await self._pump()

            if self._channel.is_open and await self._wait_for_exit():
                self._push(MessageFrame.terminated())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Output pump failed: %s", session_id)
            self._push(MessageFrame.error(f"Terminal output read error: {e}"))
        finally:
            logger.info("Output pump finished: %s", session_id)

    async def _wait_for_process(self) -> bool:
        attempts = 0
        while (
            self._shell.pid is None
            and attempts < self._spawn_wait_attempts
            and self._channel.is_open
        ):
            await asyncio.sleep(self._spawn_wait_interval)
            attempts += 1
        return self._shell.pid is not None

    async def _wait_for_exit(self) -> bool:
        for _ in range(EXIT_WAIT_ATTEMPTS):
            if not self._shell.is_alive():
                return True
            await asyncio.sleep(EXIT_WAIT_INTERVAL)
        return not self._shell.is_alive()

    async def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        started = loop.time()
        received_output = False
        idle_count = 0

        while self._channel.is_open and self._shell.is_alive():
            try:
                chunk = await self._shell.read(self._buffer_size, self._read_timeout)
            except OSError as e:
                logger.error("Error reading terminal output: %s", e)
                self._push(MessageFrame.error(f"Failed to read terminal output: {e}"))
                return

            if chunk is None:
                idle_count += 1
                await asyncio.sleep(self._idle_sleep)
                if await self._watchdog(idle_count, loop.time() - started, received_output):
                    idle_count = 0
                continue

            if not chunk:
                logger.info("Terminal output stream ended")
                self._push_text(decoder.decode(b"", final=True))
                return

            self._push_text(decoder.decode(chunk))
            if not received_output:
                received_output = True
                logger.info("First terminal output after %.0f ms", (loop.time() - started) * 1000)
            idle_count = 0

        if self._channel.is_open:
            await self._drain(decoder)

    async def _drain(self, decoder: codecs.IncrementalDecoder) -> None:
        """Forward output still buffered in the pty after the process exited."""
        for _ in range(DRAIN_MAX_CHUNKS):
            try:
                chunk = await self._shell.read(self._buffer_size, self._read_timeout)
            except OSError as e:
                logger.debug("Stopped draining terminal output: %s", e)
                break
            if not chunk:
                break
            self._push_text(decoder.decode(chunk))
        self._push_text(decoder.decode(b"", final=True))

    def _push_text(self, text: str) -> None:
        if text:
            self._push(OutputFrame(data=text))

    async def _watchdog(self, idle_count: int, elapsed: float, received_output: bool) -> bool:
        """Nudge a silent terminal. Returns True if the idle count should reset."""
        if idle_count > self._nudge_after_idle:
            logger.debug("Sending newline to wake the terminal")
            await self._shell.write("\n")
            return True

        if not received_output and not self._silence_reported and elapsed > self._silence_warning_after:
            self._silence_reported = True
            logger.warning("No terminal output after %.1fs, trying to wake the terminal", elapsed)
            await self._shell.write("\n")
            self._push(MessageFrame.warning(SILENCE_WARNING))
            self._push(MessageFrame.hint(SILENCE_HINT))
        return False
