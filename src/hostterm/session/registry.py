"""Registry of live terminal sessions keyed by connection id."""

from __future__ import annotations

import asyncio
import logging

from hostterm.session.session import TerminalSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids to sessions.

    Mutations hold an asyncio lock; closing a session happens outside it,
    so a slow teardown never blocks other connections.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TerminalSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def register(self, session: TerminalSession) -> None:
        async with self._lock:
            previous = self._sessions.get(session.session_id)
            self._sessions[session.session_id] = session
        if previous is not None and previous is not session:
            logger.warning("Replacing existing session %s", session.session_id)
            await previous.close()
        logger.debug("Session registered: %s", session.session_id)

    async def get(self, session_id: str) -> TerminalSession | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> TerminalSession | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def close(self, session_id: str) -> bool:
        """Remove and close one session. Returns False if it was not registered."""
        session = await self.remove(session_id)
        if session is None:
            return False
        await session.close()
        logger.debug("Session closed and removed: %s", session_id)
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            try:
                await session.close()
            except Exception:
                logger.exception("Error closing session %s", session.session_id)
        logger.info("All sessions closed (%d)", len(sessions))

    def snapshot(self) -> list[TerminalSession]:
        return list(self._sessions.values())
