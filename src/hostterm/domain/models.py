"""Core domain models for the hostterm system.

These models describe the frame protocol spoken with the browser
terminal: inbound command frames, outbound frames produced by the
session pipeline, and the small value types shared by the shell and
session layers.
"""

from __future__ import annotations

import enum
import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ExecutionMode(str, enum.Enum):
    """Where the terminal's controlling process runs."""

    HOST = "host"  # nsenter into the host's namespaces
    SIMPLE = "simple"  # plain local shell


class ProcessState(str, enum.Enum):
    """Lifecycle state of a terminal process."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    CLOSED = "closed"


class MessageLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ProtocolError(Exception):
    """Raised when an inbound frame cannot be decoded."""


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class Outcome(BaseModel):
    """Result of an operation whose failure is an expected condition.

    Writing to or resizing a terminal that is not running is not an
    error worth raising; callers branch on ``ok`` instead.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str | None = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> Outcome:
        return cls(ok=False, reason=reason)

    def __bool__(self) -> bool:
        return self.ok


# ---------------------------------------------------------------------------
# Inbound command frames (discriminated union on "type")
# ---------------------------------------------------------------------------


class InitCommand(BaseModel):
    """Start the terminal process with an initial window size."""

    model_config = ConfigDict(frozen=True)

    type: Literal["TERMINAL_INIT"] = "TERMINAL_INIT"
    cols: int = Field(default=80, gt=0)
    rows: int = Field(default=24, gt=0)


class InputCommand(BaseModel):
    """Raw keyboard input to write to the terminal process."""

    model_config = ConfigDict(frozen=True)

    type: Literal["TERMINAL_COMMAND"] = "TERMINAL_COMMAND"
    data: str = Field(default="")


class ResizeCommand(BaseModel):
    """New terminal window size."""

    model_config = ConfigDict(frozen=True)

    type: Literal["TERMINAL_RESIZE"] = "TERMINAL_RESIZE"
    cols: int = Field(gt=0)
    rows: int = Field(gt=0)


InboundCommand = Annotated[
    Union[InitCommand, InputCommand, ResizeCommand],
    Field(discriminator="type"),
]

COMMAND_TYPES = frozenset({"TERMINAL_INIT", "TERMINAL_COMMAND", "TERMINAL_RESIZE"})

_command_adapter: TypeAdapter[InboundCommand] = TypeAdapter(InboundCommand)


def parse_command(payload: str | bytes) -> InitCommand | InputCommand | ResizeCommand:
    """Decode one inbound text frame.

    Raises:
        ProtocolError: If the payload is not JSON, not an object, carries an
            unknown ``type`` or has invalid fields.
    """
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Failed to process command: invalid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise ProtocolError("Failed to process command: frame must be a JSON object")
    command_type = raw.get("type")
    if command_type not in COMMAND_TYPES:
        raise ProtocolError(f"Unknown command type: {command_type}")
    try:
        return _command_adapter.validate_python(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'frame'}: {err['msg']}"
            for err in e.errors()
        )
        raise ProtocolError(f"Failed to process command: {errors}") from e


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------

ANSI_GREEN = "32"
ANSI_YELLOW = "33"
ANSI_RED = "31"
ANSI_CYAN = "36"


def ansi_banner(text: str, color: str) -> str:
    """Wrap text as a colored line the browser terminal renders as-is."""
    return f"\r\n\x1b[{color}m{text}\x1b[0m\r\n"


class Frame(BaseModel):
    """Base class for outbound frames."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ConnectedFrame(Frame):
    type: Literal["TERMINAL_CONNECTED"] = "TERMINAL_CONNECTED"
    session_id: str = Field(alias="sessionId")
    data: str = Field(
        default=ansi_banner("Connected to server, waiting for terminal initialization...", ANSI_GREEN)
    )


class ReadyFrame(Frame):
    type: Literal["TERMINAL_READY"] = "TERMINAL_READY"


class OutputFrame(Frame):
    type: Literal["TERMINAL_OUTPUT"] = "TERMINAL_OUTPUT"
    data: str


class MessageFrame(Frame):
    """Banner text shown inside the terminal (info, warning or error)."""

    type: Literal["TERMINAL_MESSAGE"] = "TERMINAL_MESSAGE"
    data: str
    level: MessageLevel = MessageLevel.INFO
    event: str | None = None

    @classmethod
    def info(cls, text: str) -> MessageFrame:
        return cls(data=ansi_banner(text, ANSI_CYAN), level=MessageLevel.INFO)

    @classmethod
    def hint(cls, text: str) -> MessageFrame:
        return cls(data=ansi_banner(text, ANSI_YELLOW), level=MessageLevel.INFO)

    @classmethod
    def warning(cls, text: str) -> MessageFrame:
        return cls(data=ansi_banner(text, ANSI_YELLOW), level=MessageLevel.WARNING)

    @classmethod
    def error(cls, text: str) -> MessageFrame:
        return cls(data=ansi_banner(f"Error: {text}", ANSI_RED), level=MessageLevel.ERROR)

    @classmethod
    def terminated(cls) -> MessageFrame:
        return cls(
            data=ansi_banner("Terminal session ended", ANSI_RED),
            level=MessageLevel.ERROR,
            event="terminated",
        )


class ErrorFrame(Frame):
    type: Literal["TERMINAL_ERROR"] = "TERMINAL_ERROR"
    error: str


def encode_batch(frames: list[str]) -> str:
    """Wrap already-serialized frames as one TERMINAL_BATCH frame.

    The frames are spliced in verbatim, in order, so a batch never pays
    for a second round of serialization.
    """
    return '{"type":"TERMINAL_BATCH","messages":[' + ",".join(frames) + "]}"
