"""Bounded queue of serialized frames between the output pump and sender.

``push`` never waits: when the queue is full the oldest frame is dropped
to make room. Under sustained overflow the client loses the oldest
buffered output, never the newest.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class FrameQueue:
    """Drop-oldest FIFO of pre-serialized frames."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=capacity)
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        """Number of frames evicted to make room so far."""
        return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()

    def push(self, item: str) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self._dropped += 1
                if self._dropped == 1 or self._dropped % self._capacity == 0:
                    logger.warning("Frame queue full, %d frames dropped so far", self._dropped)

    async def poll(self, timeout: float = 0) -> str | None:
        """Take the oldest frame, waiting up to ``timeout`` seconds.

        A timeout of zero or less never waits. Returns None when no frame
        is available.
        """
        if timeout <= 0:
            try:
                return self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def drain(self) -> list[str]:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items
