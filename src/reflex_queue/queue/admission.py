"""Admission control for bounded queues.

The check reads the list length in its own round trip, so under concurrent
producers the ceiling is advisory: a few items may land past ``max_size``.
Producers that need a hard ceiling use the strict path of
:meth:`WorkQueue.enqueue`, which checks and pushes in one script.
"""

from __future__ import annotations

from reflex_queue.logging import get_logger
from reflex_queue.queue.errors import BackpressureError
from reflex_queue.queue.models import QueueConfig, QueueName
from reflex_queue.queue.storage import QueueStore

log = get_logger("reflex_queue.queue.admission")


class AdmissionController:
    """Rejects enqueues into queues that are at capacity."""

    def __init__(self, store: QueueStore, config: QueueConfig) -> None:
        self._store = store
        self._config = config

    async def backpressure(self, queue_name: str | QueueName) -> bool:
        """Whether *queue_name* is at or above its ``max_size``."""
        definition = self._config.get_definition(queue_name)
        depth = await self._store.length(definition.key)
        return depth >= definition.max_size

    async def assert_admissible(self, queue_name: str | QueueName) -> None:
        """Raise :class:`BackpressureError` if *queue_name* is full."""
        definition = self._config.get_definition(queue_name)
        depth = await self._store.length(definition.key)
        if depth >= definition.max_size:
            log.warning(
                "queue_backpressure_applied",
                queue=definition.name,
                depth=depth,
                max_size=definition.max_size,
            )
            raise BackpressureError(definition.name, definition.max_size, depth)
