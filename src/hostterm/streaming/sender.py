"""Batching worker: frames from the FrameQueue to the client.

Collects queued frames into a TERMINAL_BATCH and sends it when either the
flush interval has passed or the batch has grown to half the buffer
size. Bursty output (``cat`` of a large file) becomes a bounded number
of socket writes per second while single keystrokes still echo within
one flush interval.
"""

from __future__ import annotations

import asyncio
import logging

from hostterm.domain.models import encode_batch
from hostterm.endpoint.channel import Channel, ChannelClosedError
from hostterm.streaming.frame_queue import FrameQueue

logger = logging.getLogger(__name__)

POLL_TIMEOUT = 0.1
ERROR_BACKOFF = 0.5


class OutputSender:
    """Drains one session's FrameQueue into batched channel writes."""

    def __init__(
        self,
        queue: FrameQueue,
        channel: Channel,
        buffer_size: int = 4096,
        flush_interval: float = 0.1,
        poll_timeout: float = POLL_TIMEOUT,
        error_backoff: float = ERROR_BACKOFF,
    ) -> None:
        self._queue = queue
        self._channel = channel
        self._threshold = buffer_size // 2
        self._flush_interval = flush_interval
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self._batch: list[str] = []
        self._batch_size = 0
        self.batches_sent = 0

    def _append(self, frame: str) -> None:
        self._batch.append(frame)
        self._batch_size += len(frame) + 1

    async def _flush(self) -> None:
        await self._channel.send_text(encode_batch(self._batch))
        self._batch = []
        self._batch_size = 0
        self.batches_sent += 1

    async def run(self) -> None:
        """Worker entry point; flushes any partial batch before returning."""
        session_id = self._channel.session_id
        loop = asyncio.get_running_loop()
        last_flush = loop.time()
        try:
            while self._channel.is_open:
                frame = await self._queue.poll(self._poll_timeout)
                if frame is not None:
                    self._append(frame)
                    while self._batch_size < self._threshold:
                        frame = await self._queue.poll(0)
                        if frame is None:
                            break
                        self._append(frame)

                now = loop.time()
                due = now - last_flush >= self._flush_interval
                if self._batch and (due or self._batch_size >= self._threshold):
                    try:
                        await self._flush()
                    except ChannelClosedError as e:
                        logger.debug("Channel closing, sender stops: %s", e)
                        self._batch = []
                        self._batch_size = 0
                        return
                    except Exception:
                        logger.exception("Failed to send terminal output batch: %s", session_id)
                        await asyncio.sleep(self._error_backoff)
                        continue
                    last_flush = now
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Output sender failed: %s", session_id)
        finally:
            if self._batch and self._channel.is_open:
                try:
                    await self._flush()
                except Exception as e:
                    logger.warning("Failed to send final output batch: %s", e)
            logger.info("Output sender finished: %s", session_id)
