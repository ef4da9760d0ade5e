"""Queue error taxonomy.

Only :class:`BackpressureError` and :class:`QueueConnectionError` ever escape
to the direct caller of a queue operation.  Serialization and processing
errors are absorbed at the item boundary.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base class for all work-queue errors."""


class UnknownQueueError(QueueError, LookupError):
    """The queue name is not part of the configured queue table."""

    def __init__(self, queue_name: str) -> None:
        super().__init__(f"Unknown queue: {queue_name}")
        self.queue_name = queue_name


class BackpressureError(QueueError):
    """The queue is at capacity; the producer must retry later."""

    def __init__(self, queue_name: str, max_size: int, depth: int | None = None) -> None:
        super().__init__(f"Queue {queue_name} is full (max: {max_size}), please retry later")
        self.queue_name = queue_name
        self.max_size = max_size
        self.depth = depth


class SerializationError(QueueError, ValueError):
    """A stored queue element could not be decoded into a work item."""

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class ProcessingError(QueueError):
    """Raised by item handlers to report a failed item."""


class QueueConnectionError(QueueError, ConnectionError):
    """The queue store could not be reached."""
