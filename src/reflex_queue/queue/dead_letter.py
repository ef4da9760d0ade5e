"""Dead-letter routing for items whose handler failed.

Entries are appended to a single dead-letter list together with the error
that failed them.  Nothing here retries or replays; that is left to
operational tooling reading the list.
"""

from __future__ import annotations

import traceback

from reflex_queue.logging import get_logger
from reflex_queue.queue.errors import QueueConnectionError
from reflex_queue.queue.models import DeadLetterEntry, ItemState, QueueConfig, WorkItem
from reflex_queue.queue.storage import QueueStore

log = get_logger("reflex_queue.queue.dead_letter")

# Number of traceback lines kept with each entry.
_BACKTRACE_LINES = 10


def _format_backtrace(error: BaseException) -> list[str]:
    if error.__traceback__ is None:
        return []
    lines = traceback.format_tb(error.__traceback__)
    return [line.rstrip() for line in lines[-_BACKTRACE_LINES:]]


class DeadLetterRouter:
    """Appends failed items to the dead-letter list."""

    def __init__(self, store: QueueStore, config: QueueConfig) -> None:
        self._store = store
        self._key = config.dead_letter_key
        self._ttl = config.dead_letter_ttl

    @property
    def key(self) -> str:
        """Redis key of the dead-letter list."""
        return self._key

    async def send_to_dead_letter(
        self,
        item: WorkItem,
        error: BaseException,
        *,
        queue_name: str | None = None,
    ) -> bool:
        """Record *item* and *error* in the dead-letter list.

        The push and the expiry refresh happen in one transaction.

        Args:
            item: The item whose processing failed.
            error: The exception raised by the handler.
            queue_name: The queue the item was taken from.

        Returns:
            ``True`` if the entry was stored, ``False`` if the store was
            unreachable (the failure is logged with the item id).
        """
        entry = DeadLetterEntry.from_exception(
            item,
            error,
            queue=queue_name,
            backtrace=_format_backtrace(error),
        )
        try:
            await self._store.push(self._key, entry.to_json(), self._ttl)
        except QueueConnectionError:
            log.exception("dead_letter_write_failed", item_id=item.id, queue=queue_name)
            return False
        log.info(
            "queue_item_dead_lettered",
            item_id=item.id,
            queue=queue_name,
            error_class=entry.error_class,
            error=entry.error_message,
            state=ItemState.DEAD_LETTERED.value,
        )
        return True

    async def depth(self) -> int:
        """Return the number of entries in the dead-letter list."""
        return await self._store.length(self._key)
