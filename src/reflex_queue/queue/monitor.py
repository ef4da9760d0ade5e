"""Queue depth monitoring and periodic reporting.

:class:`DepthMonitor` answers point-in-time questions (depth per queue,
system-wide backpressure).  :class:`QueueMonitor` samples it on an interval
and only logs when something worth seeing changed.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from reflex_queue.logging import get_logger
from reflex_queue.queue.models import QueueConfig
from reflex_queue.queue.storage import QueueStore
from reflex_queue.redis_client import ping

log = get_logger("reflex_queue.queue.monitor")


class DepthMonitor:
    """Reports the current length of every configured queue."""

    def __init__(self, store: QueueStore, config: QueueConfig) -> None:
        self._store = store
        self._config = config

    async def queue_depths(self) -> dict[str, int]:
        """Return ``{queue_name: length}`` for all configured queues."""
        names = list(self._config)
        lengths = await self._store.lengths([self._config[name].key for name in names])
        return dict(zip(names, lengths, strict=True))

    async def backpressure(self) -> bool:
        """Whether any configured queue is at or above its ``max_size``."""
        depths = await self.queue_depths()
        return self.any_full(depths)

    async def dead_letter_depth(self) -> int:
        """Return the number of entries in the dead-letter list."""
        return await self._store.length(self._config.dead_letter_key)

    def any_full(self, depths: dict[str, int]) -> bool:
        """Whether any queue in *depths* is at or above its ``max_size``."""
        return any(depth >= self._config[name].max_size for name, depth in depths.items())


@dataclass(frozen=True)
class QueueStats:
    """One sample of queue state."""

    queue_depths: dict[str, int]
    backpressure: bool
    dead_letter_depth: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "queue_depths": dict(self.queue_depths),
            "backpressure": self.backpressure,
            "dead_letter_depth": self.dead_letter_depth,
            "timestamp": self.timestamp.isoformat(),
        }


class QueueMonitor:
    """Periodically samples queue depths and logs meaningful changes.

    A report is logged when it is the first one, when the backpressure flag
    flips, when any queue moved by more than *depth_delta* items, or after
    *silent_reports* consecutive unchanged reports.
    """

    def __init__(
        self,
        depth_monitor: DepthMonitor,
        *,
        interval_seconds: float = 30.0,
        silent_reports: int = 5,
        depth_delta: int = 10,
    ) -> None:
        self._depths = depth_monitor
        self._interval = interval_seconds
        self._silent_reports = silent_reports
        self._depth_delta = depth_delta
        self._previous: QueueStats | None = None
        self._consecutive_unchanged = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def latest(self) -> QueueStats | None:
        """The most recent sample, if any."""
        return self._previous

    @property
    def is_running(self) -> bool:
        """Whether the reporting loop is active."""
        return self._task is not None and not self._task.done()

    async def collect(self) -> QueueStats:
        """Take one sample of all queue depths."""
        depths = await self._depths.queue_depths()
        return QueueStats(
            queue_depths=depths,
            backpressure=self._depths.any_full(depths),
            dead_letter_depth=await self._depths.dead_letter_depth(),
        )

    async def report(self) -> QueueStats:
        """Sample the queues and log the result if it is worth logging."""
        stats = await self.collect()
        if self._should_log(stats):
            log.info(
                "queue_depths_reported",
                queue_depths=stats.queue_depths,
                backpressure=stats.backpressure,
                dead_letter_depth=stats.dead_letter_depth,
            )
            self._consecutive_unchanged = 0
        else:
            self._consecutive_unchanged += 1
        self._previous = stats
        return stats

    async def health(self, redis_client: Any) -> dict[str, Any]:
        """Return Redis reachability plus the latest queue sample."""
        healthy = await ping(redis_client)
        stats: QueueStats | None = None
        if healthy:
            stats = await self.collect()
        return {
            "redis": "ok" if healthy else "unreachable",
            "stats": stats.to_dict() if stats else None,
        }

    def start(self) -> None:
        """Start the periodic reporting task."""
        if self.is_running:
            log.warning("queue_monitor_already_running")
            return
        self._task = asyncio.create_task(self._report_loop())
        log.info("queue_monitor_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the reporting task."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("queue_monitor_stopped")

    def _should_log(self, stats: QueueStats) -> bool:
        previous = self._previous
        if previous is None:
            return True
        if self._consecutive_unchanged >= self._silent_reports:
            return True
        if previous.backpressure != stats.backpressure:
            return True
        return any(
            abs(depth - previous.queue_depths.get(name, 0)) > self._depth_delta
            for name, depth in stats.queue_depths.items()
        )

    async def _report_loop(self) -> None:
        while True:
            try:
                await self.report()
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("queue_monitor_report_failed")
                await asyncio.sleep(self._interval)
