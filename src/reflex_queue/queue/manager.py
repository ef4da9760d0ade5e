"""Work queue facade for enqueue, batch dequeue and batch processing.

:class:`WorkQueue` is what producers (the API layer) and consumers (stage
workers) talk to.  It composes the admission controller, the store, the
batch processor, the dead-letter router and the depth monitor, all built from
one explicit :class:`QueueConfig`.

Delivery is at-most-once: a batch is removed from its list when it is
dequeued, so a crash before the handler finishes loses those items.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from reflex_queue.logging import get_logger
from reflex_queue.queue.admission import AdmissionController
from reflex_queue.queue.dead_letter import DeadLetterRouter
from reflex_queue.queue.errors import BackpressureError, QueueConnectionError, SerializationError
from reflex_queue.queue.models import ItemState, QueueConfig, QueueName, WorkItem
from reflex_queue.queue.monitor import DepthMonitor
from reflex_queue.queue.processors import BatchProcessor, BatchResult, ItemHandler
from reflex_queue.queue.storage import QueueStore

log = get_logger("reflex_queue.queue.manager")


class WorkQueue:
    """Multi-stage, backpressure-aware work queue on Redis lists."""

    def __init__(
        self,
        store: QueueStore,
        config: QueueConfig,
        *,
        strict_admission: bool = False,
    ) -> None:
        """Initialise the queue components.

        Args:
            store: Atomic Redis list primitives.
            config: The static queue table.
            strict_admission: Check the length and push in one server-side
                script, making ``max_size`` a hard ceiling.
        """
        self._store = store
        self._config = config
        self._strict_admission = strict_admission
        self.admission = AdmissionController(store, config)
        self.dead_letter = DeadLetterRouter(store, config)
        self.processor = BatchProcessor(self.dead_letter)
        self.monitor = DepthMonitor(store, config)

    @property
    def config(self) -> QueueConfig:
        """The queue table this instance was built with."""
        return self._config

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        queue_name: str | QueueName,
        payload: Any,
        source: str,
        *,
        item_id: str | None = None,
        enqueued_at: datetime | None = None,
    ) -> bool:
        """Wrap *payload* in a work item and append it to *queue_name*.

        Args:
            queue_name: A configured queue name.
            payload: JSON-serialisable content (or a reference id).
            source: Origin tag, e.g. ``"github"``.
            item_id: Optional id; a UUID is assigned when omitted.
            enqueued_at: Optional timestamp; now (UTC) when omitted.

        Returns:
            ``True`` once stored; ``False`` if the payload is not
            JSON-serialisable or the store was unreachable.

        Raises:
            BackpressureError: The queue is at capacity; nothing was written.
        """
        item = WorkItem.create(payload, source, item_id=item_id, enqueued_at=enqueued_at)
        return await self.enqueue_item(queue_name, item)

    async def enqueue_item(self, queue_name: str | QueueName, item: WorkItem) -> bool:
        """Append an already-built *item* to *queue_name*.

        Items missing an id or timestamp get them assigned first.
        """
        definition = self._config.get_definition(queue_name)
        if not item.id or item.enqueued_at is None:
            item = WorkItem.create(
                item.payload,
                item.source,
                item_id=item.id or None,
                enqueued_at=item.enqueued_at,
            )
        try:
            element = item.to_json()
        except SerializationError as exc:
            log.error(
                "queue_enqueue_rejected",
                queue=definition.name,
                item_id=item.id,
                error=str(exc),
            )
            return False

        try:
            if self._strict_admission:
                length = await self._store.push_if_below(
                    definition.key, element, definition.ttl, definition.max_size
                )
                if length is None:
                    log.warning(
                        "queue_backpressure_applied",
                        queue=definition.name,
                        max_size=definition.max_size,
                    )
                    raise BackpressureError(definition.name, definition.max_size)
            else:
                await self.admission.assert_admissible(definition.name)
                await self._store.push(definition.key, element, definition.ttl)
        except QueueConnectionError as exc:
            log.error(
                "queue_enqueue_failed",
                queue=definition.name,
                item_id=item.id,
                error=str(exc),
            )
            return False

        log.debug(
            "queue_item_enqueued",
            queue=definition.name,
            item_id=item.id,
            source=item.source,
            state=ItemState.PENDING.value,
        )
        return True

    async def enqueue_raw_event(self, raw_payload: Any, source: str) -> bool:
        """Enqueue a raw webhook body for initial processing."""
        return await self.enqueue(QueueName.RAW_EVENTS, raw_payload, source)

    async def enqueue_event_processing(self, event_id: str, source: str) -> bool:
        """Enqueue a stored event (by id) for event processing."""
        return await self.enqueue(QueueName.EVENT_PROCESSING, {"event_id": event_id}, source)

    async def enqueue_metric_calculation(self, event_id: str, source: str) -> bool:
        """Enqueue a stored event (by id) for metric calculation."""
        return await self.enqueue(QueueName.METRIC_CALCULATION, {"event_id": event_id}, source)

    async def enqueue_anomaly_detection(self, metric_id: str, source: str) -> bool:
        """Enqueue a stored metric (by id) for anomaly detection."""
        return await self.enqueue(QueueName.ANOMALY_DETECTION, {"metric_id": metric_id}, source)

    # ------------------------------------------------------------------
    # Dequeue
    # ------------------------------------------------------------------

    async def dequeue_batch(
        self,
        queue_name: str | QueueName,
        size: int | None = None,
    ) -> list[WorkItem]:
        """Atomically take up to *size* items from the head of *queue_name*.

        Never blocks.  Elements that cannot be decoded are dropped and logged;
        they are not dead-lettered.

        Args:
            queue_name: A configured queue name.
            size: Maximum items to take; the queue's ``batch_size`` when omitted.

        Returns:
            Decoded items, oldest first (possibly empty).

        Raises:
            QueueConnectionError: The store was unreachable.
        """
        definition = self._config.get_definition(queue_name)
        count = definition.batch_size if size is None else size
        raw_items = await self._store.pop_batch(definition.key, count, definition.ttl)

        items: list[WorkItem] = []
        for raw in raw_items:
            try:
                items.append(WorkItem.from_json(raw))
            except SerializationError as exc:
                log.error(
                    "queue_item_dropped",
                    queue=definition.name,
                    error=str(exc),
                    raw=raw[:200],
                    state=ItemState.DROPPED.value,
                )
        if items:
            log.debug(
                "queue_batch_dequeued",
                queue=definition.name,
                count=len(items),
                state=ItemState.IN_FLIGHT.value,
            )
        return items

    async def peek(self, queue_name: str | QueueName, count: int = 1) -> list[WorkItem]:
        """Return up to *count* head items without removing them."""
        definition = self._config.get_definition(queue_name)
        items: list[WorkItem] = []
        for raw in await self._store.peek(definition.key, count):
            try:
                items.append(WorkItem.from_json(raw))
            except SerializationError:
                log.debug("queue_peek_skipped_malformed", queue=definition.name)
        return items

    async def flush(self, queue_name: str | QueueName) -> int:
        """Delete every item in *queue_name*, returning how many were removed."""
        definition = self._config.get_definition(queue_name)
        removed = await self._store.delete(definition.key)
        log.warning("queue_flushed", queue=definition.name, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def run_batch(
        self,
        queue_name: str | QueueName,
        handler: ItemHandler,
        size: int | None = None,
    ) -> BatchResult:
        """Dequeue one batch and drive it through *handler*."""
        definition = self._config.get_definition(queue_name)
        items = await self.dequeue_batch(definition.name, size)
        if not items:
            return BatchResult()
        return await self.processor.process(items, handler, queue_name=definition.name)

    async def process_batch(
        self,
        queue_name: str | QueueName,
        handler: ItemHandler,
        size: int | None = None,
    ) -> int:
        """Process one batch and return the number of items that succeeded.

        Per-item failures are routed to the dead-letter list and never
        propagate.
        """
        result = await self.run_batch(queue_name, handler, size)
        return result.succeeded

    # ------------------------------------------------------------------
    # Depths
    # ------------------------------------------------------------------

    async def queue_depths(self) -> dict[str, int]:
        """Return the current length of every configured queue."""
        return await self.monitor.queue_depths()

    async def backpressure(self, queue_name: str | QueueName | None = None) -> bool:
        """Whether *queue_name* (or, when omitted, any queue) is at capacity."""
        if queue_name is None:
            return await self.monitor.backpressure()
        return await self.admission.backpressure(queue_name)
