"""Pseudo-terminal backed shell process for one terminal session.

Spawns the command line chosen by the EnvironmentResolver on a new pty,
then exposes the master side for reading output, writing input and
resizing the window. A start that fails in host mode is retried once in
simple mode before the failure is surfaced.
"""

from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import select
import signal
import struct
import termios

from hostterm.domain.models import ExecutionMode, Outcome, ProcessState
from hostterm.endpoint.environment import EnvironmentResolver

logger = logging.getLogger(__name__)

INIT_POLL_INTERVAL = 0.05
TERMINATE_GRACE_PERIOD = 0.5
WRITE_TIMEOUT = 1.0
# Upper bound on waiting for an in-flight executor read during close.
PENDING_READ_TIMEOUT = 1.0

NOT_AVAILABLE = "Terminal process is not running"

# Echo on and raw-ish input so control characters and digits echo back correctly.
_STTY = "stty echo -icanon -icrnl -isig"
INIT_COMMANDS = {
    ExecutionMode.SIMPLE: _STTY + "; export PS1='$ '; echo 'Terminal ready (simple mode)'\n",
    ExecutionMode.HOST: _STTY + "; export PS1='\\h:\\w\\$ '; echo 'Terminal ready (host mode)'\n",
}


class TerminalStartError(Exception):
    """Raised when the terminal process cannot be started."""


class PtyShell:
    """Owns one pty-backed terminal process.

    ``start`` is the only operation that raises; ``write`` and ``resize``
    report an :class:`Outcome` because a dead or never-started process is
    an expected condition for them.
    """

    def __init__(
        self,
        resolver: EnvironmentResolver,
        init_timeout: float = 0.5,
        use_simple_mode: bool = False,
        write_timeout: float = WRITE_TIMEOUT,
    ) -> None:
        self._resolver = resolver
        self._init_timeout = init_timeout
        self._write_timeout = write_timeout
        self._write_lock = asyncio.Lock()
        self._pending_read: asyncio.Future[bytes | None] | None = None
        self._mode = ExecutionMode.SIMPLE if use_simple_mode else ExecutionMode.HOST
        self._state = ProcessState.NOT_STARTED
        self._pid: int | None = None
        self._master_fd: int | None = None
        self._exit_code: int | None = None
        self._rows = 0
        self._cols = 0

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    async def start(self, cols: int, rows: int) -> None:
        """Start the terminal process with the given window size.

        Raises:
            TerminalStartError: If the process cannot be started in simple
                mode (after the host mode attempt, if any).
        """
        if self._state in (ProcessState.RUNNING, ProcessState.STARTING):
            logger.warning("Terminal process is already %s", self._state.value)
            return

        self._state = ProcessState.STARTING
        while True:
            try:
                await self._launch(cols, rows)
                return
            except TerminalStartError as e:
                logger.error("Failed to start terminal process: %s", e)
                self._release()
                if self._mode is not ExecutionMode.HOST:
                    self._state = ProcessState.FAILED
                    raise
                logger.info("Retrying terminal start in simple mode")
                self._mode = ExecutionMode.SIMPLE

    async def _launch(self, cols: int, rows: int) -> None:
        plan = self._resolver.resolve(simple=self._mode is ExecutionMode.SIMPLE)
        self._mode = plan.mode
        logger.info("Starting terminal command: %s", plan.display)

        env = os.environ.copy()
        env["TERM"] = "xterm-256color"
        env["COLUMNS"] = str(cols)
        env["LINES"] = str(rows)

        self._exit_code = None
        try:
            self._spawn(plan.command, env, cols, rows)
        except OSError as e:
            raise TerminalStartError(f"Cannot start terminal process: {e}") from e

        if not self._process_alive():
            raise TerminalStartError(
                f"Terminal process exited immediately (exit code {self._exit_code})"
            )
        if not await self._wait_for_init():
            raise TerminalStartError(
                f"Terminal process exited right after start (exit code {self._exit_code})"
            )

        await self._send_init_command()
        self._state = ProcessState.RUNNING
        logger.info(
            "Terminal started (pid=%d, %dx%d, mode=%s)",
            self._pid, cols, rows, self._mode.value,
        )

    def _spawn(self, command: tuple[str, ...], env: dict[str, str], cols: int, rows: int) -> None:
        master_fd, slave_fd = os.openpty()
        try:
            # Set terminal size
            winsize = struct.pack("HHHH", rows, cols, 0, 0)
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)
            pid = os.fork()
        except OSError:
            os.close(master_fd)
            os.close(slave_fd)
            raise

        if pid == 0:
            # Child process
            try:
                os.close(master_fd)
                os.setsid()
                fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)
                os.dup2(slave_fd, 0)
                os.dup2(slave_fd, 1)
                os.dup2(slave_fd, 2)
                if slave_fd > 2:
                    os.close(slave_fd)
                os.execvpe(command[0], list(command), env)
            except BaseException:
                os._exit(127)

        # Parent process
        os.close(slave_fd)
        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
        self._pid = pid
        self._master_fd = master_fd
        self._cols = cols
        self._rows = rows

    async def _wait_for_init(self) -> bool:
        """Poll liveness for the init window to catch an immediate exit."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._init_timeout
        while loop.time() < deadline:
            if not self._process_alive():
                return False
            await asyncio.sleep(INIT_POLL_INTERVAL)
        return self._process_alive()

    async def _send_init_command(self) -> None:
        command = INIT_COMMANDS[self._mode]
        try:
            await self._write_all(command.encode())
            logger.debug("Sent init command: %r", command)
        except OSError as e:
            logger.warning("Failed to send init command: %s", e)

    def _process_alive(self) -> bool:
        """Whether the OS process exists, reaping it if it has exited."""
        if self._pid is None or self._exit_code is not None:
            return False
        try:
            pid, status = os.waitpid(self._pid, os.WNOHANG)
        except ChildProcessError:
            self._exit_code = -1
            return False
        if pid == 0:
            return True
        self._exit_code = os.waitstatus_to_exitcode(status)
        return False

    def is_alive(self) -> bool:
        return self._state is ProcessState.RUNNING and self._process_alive()

    def resize(self, cols: int, rows: int) -> Outcome:
        if not self.is_alive() or self._master_fd is None:
            logger.warning("Cannot resize terminal, process is not running")
            return Outcome.failure(NOT_AVAILABLE)
        try:
            winsize = struct.pack("HHHH", rows, cols, 0, 0)
            fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, winsize)
        except OSError as e:
            logger.warning("Failed to resize terminal: %s", e)
            return Outcome.failure(str(e))
        self._cols = cols
        self._rows = rows
        logger.debug("Terminal resized to %dx%d", cols, rows)
        return Outcome.success()

    async def write(self, data: str | bytes) -> Outcome:
        """Write input to the terminal process.

        Never blocks the event loop: when the pty input buffer is full the
        write waits for writability for up to ``write_timeout`` seconds and
        then reports how much of the payload went in.
        """
        if not self.is_alive() or self._master_fd is None:
            logger.warning("Cannot write to terminal, state is %s", self._state.value)
            return Outcome.failure(NOT_AVAILABLE)
        payload = data.encode() if isinstance(data, str) else data
        if len(payload) > 1:
            logger.debug("Writing %d bytes to terminal", len(payload))
        try:
            async with self._write_lock:
                written = await self._write_all(payload)
        except OSError as e:
            logger.error("Failed to write to terminal: %s", e)
            return Outcome.failure(f"Failed to write to terminal: {e}")
        if written < len(payload):
            logger.warning(
                "Terminal input is not accepting data, wrote %d of %d bytes",
                written, len(payload),
            )
            return Outcome.failure(
                f"Terminal input is not accepting data ({written} of {len(payload)} bytes written)"
            )
        return Outcome.success()

    async def _write_all(self, payload: bytes) -> int:
        """Write as much of ``payload`` as the pty accepts; returns the byte count."""
        fd = self._master_fd
        if fd is None:
            raise OSError(errno.EBADF, "terminal is closed")
        view = memoryview(payload)
        written = 0
        while written < len(payload):
            try:
                written += os.write(fd, view[written:])
            except BlockingIOError:
                if not await self._wait_writable(fd):
                    break
        return written

    async def _wait_writable(self, fd: int) -> bool:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()

        def _on_writable() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_writer(fd, _on_writable)
        try:
            await asyncio.wait_for(ready, self._write_timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            loop.remove_writer(fd)

    async def read(self, max_bytes: int = 4096, timeout: float = 0.1) -> bytes | None:
        """Run :meth:`read_chunk` in the default executor.

        The executor call is tracked so ``close`` can let it finish before
        the pty is closed; cancelling the caller does not abandon it.
        """
        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(None, self.read_chunk, max_bytes, timeout)
        self._pending_read = pending
        return await asyncio.shield(pending)

    @property
    def read_pending(self) -> bool:
        return self._pending_read is not None and not self._pending_read.done()

    def read_chunk(self, max_bytes: int = 4096, timeout: float = 0.1) -> bytes | None:
        """Read one chunk of process output (blocking call, run in executor).

        Returns:
            The bytes read, ``None`` when nothing arrived within ``timeout``,
            or ``b""`` at end of stream.

        Raises:
            OSError: On a read error other than end of stream.
        """
        fd = self._master_fd
        if fd is None:
            return b""
        try:
            ready, _, _ = select.select([fd], [], [], timeout)
        except (OSError, ValueError):
            # fd closed underneath us by close()
            return b""
        if not ready:
            return None
        try:
            return os.read(fd, max_bytes)
        except BlockingIOError:
            return None
        except OSError as e:
            # Linux reports EIO on the master once the child side is gone.
            if e.errno in (errno.EIO, errno.EBADF):
                return b""
            raise

    def status(self) -> str:
        if self._state is ProcessState.CLOSED:
            return "closed"
        if self._pid is None:
            return "not started"
        if not self._process_alive():
            return f"exited with code {self._exit_code}"
        return f"running, pid {self._pid}"

    async def close(self) -> None:
        """Stop the process (SIGTERM, then SIGKILL after a grace period)."""
        if self._state is ProcessState.CLOSED:
            return

        if self._process_alive():
            self._signal(signal.SIGTERM)
            loop = asyncio.get_running_loop()
            deadline = loop.time() + TERMINATE_GRACE_PERIOD
            while self._process_alive() and loop.time() < deadline:
                await asyncio.sleep(INIT_POLL_INTERVAL)
        self._kill()
        # An executor read may still sit in select() on the master fd; the fd
        # number must not be released (and possibly reused) underneath it.
        await self._finish_pending_read()
        self._close_pty()
        self._state = ProcessState.CLOSED
        logger.info("Terminal process closed")

    async def _finish_pending_read(self) -> None:
        pending = self._pending_read
        self._pending_read = None
        if pending is None:
            return
        done, _ = await asyncio.wait({pending}, timeout=PENDING_READ_TIMEOUT)
        if not done:
            logger.warning("Terminal read still in progress after %.1fs", PENDING_READ_TIMEOUT)
        elif not pending.cancelled() and pending.exception() is not None:
            logger.debug("Final terminal read failed: %s", pending.exception())

    def _signal(self, sig: int) -> None:
        if self._pid is None:
            return
        try:
            # The child leads its own session, so this reaches whatever it forked.
            os.killpg(self._pid, sig)
            return
        except (ProcessLookupError, PermissionError):
            # setsid() may not have run in the child yet
            pass
        try:
            os.kill(self._pid, sig)
        except ProcessLookupError:
            pass

    def _release(self) -> None:
        """Force-kill a still-running process and close the pty."""
        self._kill()
        self._close_pty()

    def _kill(self) -> None:
        if self._process_alive():
            self._signal(signal.SIGKILL)
            try:
                _, status = os.waitpid(self._pid, 0)
                self._exit_code = os.waitstatus_to_exitcode(status)
            except ChildProcessError:
                self._exit_code = -1

    def _close_pty(self) -> None:
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError as e:
                logger.debug("Error closing pty: %s", e)
            self._master_fd = None
