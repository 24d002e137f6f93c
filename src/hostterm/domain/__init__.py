"""Domain models for hostterm.

This package contains the frame protocol, enumerations, and value
objects used throughout the system. All models use Pydantic v2 for
validation and serialization.
"""

from hostterm.domain.models import (
    ConnectedFrame,
    ErrorFrame,
    ExecutionMode,
    InitCommand,
    InputCommand,
    MessageFrame,
    MessageLevel,
    Outcome,
    OutputFrame,
    ProcessState,
    ProtocolError,
    ReadyFrame,
    ResizeCommand,
    encode_batch,
    parse_command,
)

__all__ = [
    "ConnectedFrame",
    "ErrorFrame",
    "ExecutionMode",
    "InitCommand",
    "InputCommand",
    "MessageFrame",
    "MessageLevel",
    "Outcome",
    "OutputFrame",
    "ProcessState",
    "ProtocolError",
    "ReadyFrame",
    "ResizeCommand",
    "encode_batch",
    "parse_command",
]
