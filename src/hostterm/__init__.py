"""hostterm -- browser terminal bridge to a real shell.

Each WebSocket connection owns one pseudo-terminal backed shell. Inside a
container the shell is started in the host's namespaces through nsenter,
otherwise a local shell is used. Process output is framed, batched and
streamed back to the browser terminal.
"""

__version__ = "0.1.0"
