"""Tests for the pty-backed PtyShell process manager."""

from __future__ import annotations

import asyncio
import os
import threading
from unittest.mock import MagicMock, call

import pytest

from conftest import requires_pty
from hostterm.config.settings import TerminalConfig
from hostterm.domain.models import ExecutionMode, ProcessState
from hostterm.endpoint.environment import EnvironmentResolver, LaunchPlan
from hostterm.endpoint.shell import INIT_COMMANDS, NOT_AVAILABLE, PtyShell, TerminalStartError

MISSING_BINARY = "/nonexistent/hostterm-test-binary"


def _resolver(*plans: LaunchPlan) -> MagicMock:
    resolver = MagicMock(spec=EnvironmentResolver)
    resolver.resolve.side_effect = list(plans)
    return resolver


def _host_plan(shell: str = MISSING_BINARY) -> LaunchPlan:
    return LaunchPlan(
        command=(shell, "-t", "1", "-m", "-u", "-i", "-n", "-p", "/bin/sh"),
        mode=ExecutionMode.HOST,
        in_container=True,
    )


def _simple_plan(shell: str = "/bin/sh") -> LaunchPlan:
    return LaunchPlan(command=(shell, "-i"), mode=ExecutionMode.SIMPLE)


def _pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def _read_until(shell: PtyShell, needle: str, timeout: float = 5.0) -> str:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    seen = ""
    while loop.time() < deadline and needle not in seen:
        chunk = await shell.read(4096, 0.1)
        if chunk:
            seen += chunk.decode(errors="replace")
        elif chunk == b"":
            break
    return seen


class TestPtyShellNotRunning:
    """A shell that was never started refuses work without raising."""

    def test_initial_state(self) -> None:
        shell = PtyShell(MagicMock(spec=EnvironmentResolver))
        assert shell.state is ProcessState.NOT_STARTED
        assert shell.pid is None
        assert shell.is_alive() is False
        assert shell.status() == "not started"

    @pytest.mark.asyncio
    async def test_write_fails_without_raising(self) -> None:
        shell = PtyShell(MagicMock(spec=EnvironmentResolver))
        outcome = await shell.write("ls\n")
        assert outcome.ok is False
        assert outcome.reason == NOT_AVAILABLE

    def test_resize_fails_without_raising(self) -> None:
        shell = PtyShell(MagicMock(spec=EnvironmentResolver))
        outcome = shell.resize(100, 40)
        assert not outcome
        assert shell.cols == 0

    def test_read_chunk_without_process_is_eof(self) -> None:
        shell = PtyShell(MagicMock(spec=EnvironmentResolver))
        assert shell.read_chunk() == b""

    @pytest.mark.asyncio
    async def test_close_never_started(self) -> None:
        shell = PtyShell(MagicMock(spec=EnvironmentResolver))
        await shell.close()
        await shell.close()
        assert shell.state is ProcessState.CLOSED


@requires_pty
class TestPtyShellLifecycle:
    @pytest.mark.asyncio
    async def test_start_write_read_close(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        try:
            assert local_shell.state is ProcessState.RUNNING
            assert local_shell.mode is ExecutionMode.SIMPLE
            assert local_shell.is_alive()
            assert local_shell.status() == f"running, pid {local_shell.pid}"

            assert (await local_shell.write("echo pty-$((6*7))\n")).ok
            assert "pty-42" in await _read_until(local_shell, "pty-42")
        finally:
            pid = local_shell.pid
            await local_shell.close()

        assert local_shell.state is ProcessState.CLOSED
        assert local_shell.is_alive() is False
        assert not _pid_exists(pid)
        assert (await local_shell.write("x")).ok is False

    @pytest.mark.asyncio
    async def test_init_banner_is_printed(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        try:
            assert "Terminal ready (simple mode)" in await _read_until(
                local_shell, "Terminal ready (simple mode)"
            )
        finally:
            await local_shell.close()

    @pytest.mark.asyncio
    async def test_resize_running(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        try:
            assert local_shell.resize(132, 50).ok
            assert (local_shell.cols, local_shell.rows) == (132, 50)
        finally:
            await local_shell.close()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        try:
            pid = local_shell.pid
            await local_shell.start(80, 24)
            assert local_shell.pid == pid
        finally:
            await local_shell.close()

    @pytest.mark.asyncio
    async def test_process_exit_is_detected(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        try:
            await local_shell.write("exit 3\n")
            loop = asyncio.get_running_loop()
            deadline = loop.time() + 5.0
            while local_shell.is_alive() and loop.time() < deadline:
                await asyncio.sleep(0.05)
            assert local_shell.is_alive() is False
            assert local_shell.status() == "exited with code 3"
            assert local_shell.resize(100, 30).ok is False
        finally:
            await local_shell.close()


@requires_pty
class TestModeFallback:
    @pytest.mark.asyncio
    async def test_host_failure_retries_simple_once(self) -> None:
        resolver = _resolver(_host_plan(), _simple_plan())
        shell = PtyShell(resolver, init_timeout=0.3)
        await shell.start(80, 24)
        try:
            assert shell.state is ProcessState.RUNNING
            assert shell.mode is ExecutionMode.SIMPLE
            assert resolver.resolve.call_args_list == [call(simple=False), call(simple=True)]
        finally:
            await shell.close()

    @pytest.mark.asyncio
    async def test_host_and_simple_failure_does_not_recurse(self) -> None:
        resolver = _resolver(_host_plan(), _simple_plan(MISSING_BINARY))
        shell = PtyShell(resolver, init_timeout=0.3)
        with pytest.raises(TerminalStartError):
            await shell.start(80, 24)
        assert resolver.resolve.call_count == 2
        assert shell.state is ProcessState.FAILED
        assert shell.mode is ExecutionMode.SIMPLE

    @pytest.mark.asyncio
    async def test_simple_failure_is_terminal(self) -> None:
        resolver = _resolver(_simple_plan(MISSING_BINARY))
        shell = PtyShell(resolver, init_timeout=0.3, use_simple_mode=True)
        with pytest.raises(TerminalStartError, match="exit code 127"):
            await shell.start(80, 24)
        assert resolver.resolve.call_count == 1
        assert shell.state is ProcessState.FAILED
        assert shell.is_alive() is False
        assert (await shell.write("ls\n")).ok is False

    @pytest.mark.asyncio
    async def test_failed_shell_can_be_closed(self) -> None:
        resolver = _resolver(_simple_plan(MISSING_BINARY))
        shell = PtyShell(resolver, init_timeout=0.3, use_simple_mode=True)
        with pytest.raises(TerminalStartError):
            await shell.start(80, 24)
        await shell.close()
        assert shell.state is ProcessState.CLOSED


@requires_pty
class TestEventLoopFriendlyIO:
    @pytest.mark.asyncio
    async def test_full_input_buffer_does_not_stall_loop(self, terminal_config: TerminalConfig) -> None:
        shell = PtyShell(
            EnvironmentResolver.from_config(terminal_config),
            init_timeout=terminal_config.init_timeout,
            use_simple_mode=True,
            write_timeout=0.3,
        )
        await shell.start(80, 24)
        try:
            assert (await shell.write("sleep 30\n")).ok
            await asyncio.sleep(0.2)

            loop = asyncio.get_running_loop()
            gaps: list[float] = []
            done = asyncio.Event()

            async def ticker() -> None:
                last = loop.time()
                while not done.is_set():
                    await asyncio.sleep(0.01)
                    now = loop.time()
                    gaps.append(now - last)
                    last = now

            tick = asyncio.create_task(ticker())
            outcomes = [await shell.write("x" * 8000) for _ in range(3)]
            done.set()
            await tick

            assert max(gaps) < 0.25
            failed = [o for o in outcomes if not o]
            assert failed
            assert "of 8000 bytes written" in failed[0].reason
        finally:
            await shell.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_inflight_read(self, local_shell: PtyShell) -> None:
        await local_shell.start(80, 24)
        await _read_until(local_shell, "Terminal ready (simple mode)")
        while await local_shell.read(4096, 0.2):
            pass

        finished = threading.Event()
        original = local_shell.read_chunk

        def tracked_read(max_bytes: int = 4096, timeout: float = 0.1):
            try:
                return original(max_bytes, timeout)
            finally:
                finished.set()

        local_shell.read_chunk = tracked_read
        reader = asyncio.create_task(local_shell.read(4096, 2.0))
        await asyncio.sleep(0.05)
        assert local_shell.read_pending
        reader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await reader

        await local_shell.close()
        assert finished.is_set()
        assert not local_shell.read_pending
        assert local_shell.state is ProcessState.CLOSED


def test_init_commands_per_mode() -> None:
    assert "PS1='$ '" in INIT_COMMANDS[ExecutionMode.SIMPLE]
    assert "Terminal ready (host mode)" in INIT_COMMANDS[ExecutionMode.HOST]
    for command in INIT_COMMANDS.values():
        assert command.startswith("stty echo -icanon -icrnl -isig;")
        assert command.endswith("\n")
