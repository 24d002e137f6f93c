"""Shared test fixtures for the hostterm test suite.

Provides an in-memory channel that records what the session pipeline
sends, helpers to unpack batched frames, and configuration pointing at a
plain local /bin/sh.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

import pytest

from hostterm.config.settings import Settings, TerminalConfig
from hostterm.endpoint.channel import Channel, ChannelClosedError
from hostterm.endpoint.environment import EnvironmentResolver
from hostterm.endpoint.shell import PtyShell

requires_pty = pytest.mark.skipif(
    sys.platform.startswith("win") or not os.path.exists("/bin/sh"),
    reason="needs a POSIX pty and /bin/sh",
)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class RecordingChannel(Channel):
    """Channel that keeps every sent text frame in memory."""

    def __init__(self, session_id: str = "test-session") -> None:
        self._session_id = session_id
        self.open = True
        self.sent: list[str] = []
        self.errors: list[BaseException] = []

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, text: str) -> None:
        if not self.open:
            raise ChannelClosedError("closed")
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(text)

    def frames(self) -> list[dict]:
        return [json.loads(t) for t in self.sent]

    def flat_frames(self) -> list[dict]:
        return flatten(self.frames())


def flatten(frames: list[dict]) -> list[dict]:
    """Expand TERMINAL_BATCH frames into the frames they carry."""
    out = []
    for frame in frames:
        if frame["type"] == "TERMINAL_BATCH":
            out.extend(frame["messages"])
        else:
            out.append(frame)
    return out


def output_text(frames: list[dict]) -> str:
    return "".join(f["data"] for f in frames if f["type"] == "TERMINAL_OUTPUT")


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


# ---------------------------------------------------------------------------
# Configuration / shell
# ---------------------------------------------------------------------------


@pytest.fixture
def terminal_config() -> TerminalConfig:
    """Simple mode on /bin/sh with a short start window."""
    return TerminalConfig(use_simple_mode=True, shell_paths="/bin/sh", init_timeout_ms=200)


@pytest.fixture
def settings(terminal_config: TerminalConfig) -> Settings:
    return Settings(terminal=terminal_config)


@pytest.fixture
def local_shell(terminal_config: TerminalConfig) -> PtyShell:
    return PtyShell(
        EnvironmentResolver.from_config(terminal_config),
        init_timeout=terminal_config.init_timeout,
        use_simple_mode=True,
    )
