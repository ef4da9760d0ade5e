"""Queue models: queue table, work item envelope and dead-letter entry.

Items flow through states: PENDING -> IN_FLIGHT -> COMPLETED | DEAD_LETTERED,
or PENDING -> DROPPED when the stored envelope cannot be decoded.  IN_FLIGHT
exists only for the duration of one batch and is never persisted.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from reflex_queue.logging import get_logger
from reflex_queue.queue.errors import SerializationError, UnknownQueueError

if TYPE_CHECKING:
    from reflex_queue.config import Settings

log = get_logger("reflex_queue.queue.models")

# Fields owned by the envelope; anything else found in a stored element is
# carried in ``WorkItem.extra``.
_ENVELOPE_FIELDS = frozenset({"id", "source", "payload", "enqueued_at"})


class QueueName(str, Enum):
    """The processing stages of the event pipeline."""

    RAW_EVENTS = "raw_events"
    EVENT_PROCESSING = "event_processing"
    METRIC_CALCULATION = "metric_calculation"
    ANOMALY_DETECTION = "anomaly_detection"


class ItemState(str, Enum):
    """Lifecycle states for a work item."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


@dataclass(frozen=True)
class QueueDefinition:
    """Static settings of one logical queue.

    Attributes:
        name: Logical queue name.
        key: Redis list key holding the queue.
        max_size: Admission ceiling; enqueue is rejected at this depth.
        batch_size: Default number of items taken per dequeue.
        ttl: Expiry in seconds refreshed on writes (0 disables expiry).
    """

    name: str
    key: str
    max_size: int
    batch_size: int
    ttl: int

    def __post_init__(self) -> None:
        if not self.name or not self.key:
            raise ValueError("Queue name and key must be non-empty")
        if self.max_size < 1:
            raise ValueError(f"max_size must be >= 1 for queue {self.name}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 for queue {self.name}")
        if self.ttl < 0:
            raise ValueError(f"ttl must be >= 0 for queue {self.name}")


class QueueConfig(Mapping[str, QueueDefinition]):
    """Immutable table of queue definitions plus the dead-letter list settings."""

    def __init__(
        self,
        queues: list[QueueDefinition] | tuple[QueueDefinition, ...],
        dead_letter_key: str = "queue:dead_letter",
        dead_letter_ttl: int = 3 * 24 * 60 * 60,
    ) -> None:
        table: dict[str, QueueDefinition] = {}
        keys: set[str] = set()
        for definition in queues:
            if definition.name in table:
                raise ValueError(f"Duplicate queue name: {definition.name}")
            if definition.key in keys or definition.key == dead_letter_key:
                raise ValueError(f"Duplicate queue key: {definition.key}")
            table[definition.name] = definition
            keys.add(definition.key)
        if dead_letter_ttl < 0:
            raise ValueError("dead_letter_ttl must be >= 0")
        self._queues = MappingProxyType(table)
        self.dead_letter_key = dead_letter_key
        self.dead_letter_ttl = dead_letter_ttl

    def __getitem__(self, name: str) -> QueueDefinition:
        return self._queues[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._queues)

    def __len__(self) -> int:
        return len(self._queues)

    def get_definition(self, name: str | QueueName) -> QueueDefinition:
        """Return the definition for *name* or raise :class:`UnknownQueueError`."""
        key = name.value if isinstance(name, QueueName) else name
        try:
            return self._queues[key]
        except KeyError:
            raise UnknownQueueError(key) from None


# Defaults per stage: (key, max_size, batch_size)
_DEFAULT_QUEUES: dict[QueueName, tuple[str, int, int]] = {
    QueueName.RAW_EVENTS: ("queue:events:raw", 50_000, 100),
    QueueName.EVENT_PROCESSING: ("queue:events:processing", 10_000, 50),
    QueueName.METRIC_CALCULATION: ("queue:metrics:calculation", 5_000, 25),
    QueueName.ANOMALY_DETECTION: ("queue:anomalies:detection", 1_000, 10),
}


def build_queue_config(settings: Settings) -> QueueConfig:
    """Build the static queue table from application settings."""
    ttl = settings.queue_default_ttl_seconds
    return QueueConfig(
        [
            QueueDefinition(
                name=name.value,
                key=key,
                max_size=max_size,
                batch_size=batch_size,
                ttl=ttl,
            )
            for name, (key, max_size, batch_size) in _DEFAULT_QUEUES.items()
        ],
        dead_letter_key=settings.queue_dead_letter_key,
        dead_letter_ttl=settings.queue_dead_letter_ttl_seconds,
    )


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class WorkItem:
    """The envelope stored in a queue list.

    Once serialised an item is never mutated; consumers only report the
    outcome of handling it.

    Attributes:
        id: Unique item identifier.
        source: Free-text origin tag (e.g. ``"github"``).
        payload: Opaque JSON-serialisable content, or a reference id.
        enqueued_at: When the item was enqueued.
        extra: Any other fields found in the stored envelope.
    """

    id: str
    source: str = ""
    payload: Any = None
    enqueued_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        payload: Any,
        source: str,
        *,
        item_id: str | None = None,
        enqueued_at: datetime | None = None,
    ) -> WorkItem:
        """Build a new item, assigning an id and timestamp when omitted."""
        return cls(
            id=item_id or str(uuid4()),
            source=source,
            payload=payload,
            enqueued_at=enqueued_at or _utc_now(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted envelope dictionary."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "source": self.source,
                "payload": self.payload,
                "enqueued_at": self.enqueued_at.isoformat() if self.enqueued_at else None,
            }
        )
        return data

    def to_json(self) -> str:
        """Serialise to the JSON string stored in Redis."""
        try:
            return json.dumps(self.to_dict())
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Payload of item {self.id} is not JSON-serialisable") from exc

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkItem:
        """Create a WorkItem from a decoded envelope dictionary.

        Elements pushed without an id (e.g. by another producer) get a fresh
        UUID so they are still delivered.
        """
        item_id = data.get("id")
        if item_id is None or item_id == "":
            item_id = str(uuid4())
            log.debug("queue_item_id_assigned", item_id=item_id)
        return cls(
            id=str(item_id),
            source=str(data.get("source") or ""),
            payload=data.get("payload"),
            enqueued_at=_parse_timestamp(data.get("enqueued_at")),
            extra={k: v for k, v in data.items() if k not in _ENVELOPE_FIELDS},
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> WorkItem:
        """Decode one raw queue element.

        Raises:
            SerializationError: If the element is not valid JSON or not a
                JSON object.
        """
        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SerializationError(f"Invalid JSON in queue element: {exc}", raw=raw) from exc
        if not isinstance(data, dict):
            raise SerializationError("Queue element is not a JSON object", raw=raw)
        return cls.from_dict(data)


@dataclass(frozen=True)
class DeadLetterEntry:
    """A failed item annotated with the error that failed it."""

    item: WorkItem
    error_message: str
    error_class: str
    backtrace: list[str] = field(default_factory=list)
    failed_at: datetime = field(default_factory=_utc_now)
    queue: str | None = None

    @classmethod
    def from_exception(
        cls,
        item: WorkItem,
        error: BaseException,
        *,
        queue: str | None = None,
        backtrace: list[str] | None = None,
    ) -> DeadLetterEntry:
        """Build an entry from the exception raised while handling *item*."""
        return cls(
            item=item,
            error_message=str(error),
            error_class=type(error).__name__,
            backtrace=backtrace or [],
            queue=queue,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted dead-letter dictionary."""
        data = self.item.to_dict()
        data.update(
            {
                "error": {
                    "message": self.error_message,
                    "class_name": self.error_class,
                    "backtrace": self.backtrace,
                },
                "failed_at": self.failed_at.isoformat(),
                "queue": self.queue,
            }
        )
        return data

    def to_json(self) -> str:
        """Serialise to the JSON string stored in the dead-letter list."""
        return json.dumps(self.to_dict(), default=str)
