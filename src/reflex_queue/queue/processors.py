"""Per-item handler interface and the batch processor.

A batch of N items always yields N outcomes: each item either succeeds or is
routed to the dead-letter list.  One item's failure never aborts the rest of
its batch.
"""

from __future__ import annotations

import inspect
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from reflex_queue.logging import get_logger
from reflex_queue.queue.dead_letter import DeadLetterRouter
from reflex_queue.queue.errors import ProcessingError
from reflex_queue.queue.models import ItemState, WorkItem

log = get_logger("reflex_queue.queue.processors")


class HandlerResult:
    """Explicit outcome a handler may return instead of raising."""

    __slots__ = ("success", "error")

    def __init__(self, success: bool = True, error: str | None = None) -> None:
        self.success = success
        self.error = error


class ItemHandler(Protocol):
    """Handles one dequeued work item.

    Coroutine functions and plain callables are both accepted.  Completing
    without raising marks the item completed, whatever the return value,
    unless it is a failed :class:`HandlerResult`.  Raising, or returning a
    failed result, dead-letters it.
    """

    def __call__(self, item: WorkItem, /) -> Any: ...


@dataclass(frozen=True)
class BatchResult:
    """Outcome counts for one processed batch."""

    dequeued: int = 0
    succeeded: int = 0
    dead_lettered: int = 0

    @property
    def failed(self) -> int:
        """Items whose handler failed (routed to dead-letter or not)."""
        return self.dequeued - self.succeeded


class BatchProcessor:
    """Drives a batch through a handler with per-item failure isolation."""

    def __init__(self, dead_letter: DeadLetterRouter) -> None:
        self._dead_letter = dead_letter

    async def process(
        self,
        items: Sequence[WorkItem],
        handler: ItemHandler,
        *,
        queue_name: str | None = None,
    ) -> BatchResult:
        """Run *handler* over *items* in order.

        Args:
            items: Dequeued items, oldest first.
            handler: The per-item handler.
            queue_name: Queue the batch came from (for logs and dead-letter).

        Returns:
            A :class:`BatchResult`.
        """
        succeeded = 0
        dead_lettered = 0

        for item in items:
            try:
                result = handler(item)
                if inspect.isawaitable(result):
                    result = await result
                if isinstance(result, HandlerResult) and not result.success:
                    raise ProcessingError(result.error or "Handler reported failure")
            except Exception as exc:
                log.exception(
                    "queue_item_failed",
                    item_id=item.id,
                    queue=queue_name,
                    error=str(exc),
                )
                if await self._dead_letter.send_to_dead_letter(item, exc, queue_name=queue_name):
                    dead_lettered += 1
                continue
            succeeded += 1
            log.debug(
                "queue_item_completed",
                item_id=item.id,
                queue=queue_name,
                state=ItemState.COMPLETED.value,
            )

        if items:
            log.debug(
                "queue_batch_processed",
                queue=queue_name,
                dequeued=len(items),
                succeeded=succeeded,
                dead_lettered=dead_lettered,
            )
        return BatchResult(dequeued=len(items), succeeded=succeeded, dead_lettered=dead_lettered)
