"""Multi-stage work queue for Reflex.

Provides Redis-list-backed stage queues with admission control, atomic batch
dequeue, per-item failure isolation and dead-letter routing.
"""

from reflex_queue.queue.admission import AdmissionController
from reflex_queue.queue.dead_letter import DeadLetterRouter
from reflex_queue.queue.errors import (
    BackpressureError,
    ProcessingError,
    QueueConnectionError,
    QueueError,
    SerializationError,
    UnknownQueueError,
)
from reflex_queue.queue.manager import WorkQueue
from reflex_queue.queue.models import (
    DeadLetterEntry,
    ItemState,
    QueueConfig,
    QueueDefinition,
    QueueName,
    WorkItem,
    build_queue_config,
)
from reflex_queue.queue.monitor import DepthMonitor, QueueMonitor, QueueStats
from reflex_queue.queue.processors import BatchProcessor, BatchResult, HandlerResult, ItemHandler
from reflex_queue.queue.storage import QueueStore
from reflex_queue.queue.workers import StageWorkerPool

__all__ = [
    "AdmissionController",
    "BackpressureError",
    "BatchProcessor",
    "BatchResult",
    "DeadLetterEntry",
    "DeadLetterRouter",
    "DepthMonitor",
    "HandlerResult",
    "ItemHandler",
    "ItemState",
    "ProcessingError",
    "QueueConfig",
    "QueueConnectionError",
    "QueueDefinition",
    "QueueError",
    "QueueMonitor",
    "QueueName",
    "QueueStats",
    "QueueStore",
    "SerializationError",
    "StageWorkerPool",
    "UnknownQueueError",
    "WorkItem",
    "WorkQueue",
    "build_queue_config",
]
