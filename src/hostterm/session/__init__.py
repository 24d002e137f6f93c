"""Session lifecycle and protocol dispatch for hostterm.

Public API:
    TerminalSession -- One connection's shell and stream workers
    SessionRegistry -- Live sessions keyed by connection id
    TerminalProtocolHandler -- Transport callbacks and command dispatch
"""

from hostterm.session.handler import TerminalProtocolHandler
from hostterm.session.registry import SessionRegistry
from hostterm.session.session import TerminalSession

__all__ = ["SessionRegistry", "TerminalProtocolHandler", "TerminalSession"]
