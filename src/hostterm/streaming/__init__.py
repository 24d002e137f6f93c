"""Output streaming pipeline for hostterm.

Each running session has two workers joined by a bounded queue: the
OutputPump reads the terminal and produces frames, the OutputSender
batches them onto the client channel.

Public API:
    FrameQueue -- Drop-oldest bounded frame queue
    OutputPump -- Reader worker
    OutputSender -- Batching sender worker
"""

from hostterm.streaming.frame_queue import FrameQueue
from hostterm.streaming.pump import OutputPump
from hostterm.streaming.sender import OutputSender

__all__ = ["FrameQueue", "OutputPump", "OutputSender"]
