"""Terminal endpoint module for hostterm.

Hosts the WebSocket server the browser terminal connects to, the
pty-backed shell each connection drives, and the environment probing
that decides between a local shell and the host's shell via nsenter.
"""
