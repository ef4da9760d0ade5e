"""Stage workers: polling loops that drain each stage queue.

Spawns ``asyncio.Task`` workers that repeatedly run a batch from their stage
queue through the stage handler.  A worker loops again immediately while its
queue yields items, sleeps for the idle interval when the queue is empty, and
backs off after failed rounds (e.g. Redis unreachable).
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from typing import Any

from reflex_queue.config import Settings
from reflex_queue.logging import get_logger
from reflex_queue.queue.manager import WorkQueue
from reflex_queue.queue.processors import ItemHandler

log = get_logger("reflex_queue.queue.workers")


class StageWorkerPool:
    """Runs worker tasks for every stage queue that has a handler.

    Workers are plain ``asyncio.Task`` objects, no separate processes.
    """

    def __init__(
        self,
        work_queue: WorkQueue,
        handlers: Mapping[str, ItemHandler],
        *,
        workers_per_stage: int = 2,
        idle_poll_seconds: float = 5.0,
        error_backoff_seconds: float = 5.0,
        error_backoff_max_seconds: float = 30.0,
        max_consecutive_errors: int = 3,
        drain_timeout_seconds: float = 30.0,
    ) -> None:
        for queue_name in handlers:
            work_queue.config.get_definition(queue_name)
        self._queue = work_queue
        self._handlers = dict(handlers)
        self._workers_per_stage = workers_per_stage
        self._idle_poll = idle_poll_seconds
        self._error_backoff = error_backoff_seconds
        self._error_backoff_max = error_backoff_max_seconds
        self._max_consecutive_errors = max_consecutive_errors
        self._drain_timeout = drain_timeout_seconds
        self._workers: list[asyncio.Task[None]] = []
        self._running = False
        self._processed: dict[str, int] = {name: 0 for name in self._handlers}

    @classmethod
    def from_settings(
        cls,
        work_queue: WorkQueue,
        handlers: Mapping[str, ItemHandler],
        settings: Settings,
    ) -> StageWorkerPool:
        """Build a pool using the worker tuning from *settings*."""
        return cls(
            work_queue,
            handlers,
            workers_per_stage=settings.queue_workers_per_stage,
            idle_poll_seconds=settings.queue_idle_poll_seconds,
            error_backoff_seconds=settings.queue_error_backoff_seconds,
            error_backoff_max_seconds=settings.queue_error_backoff_max_seconds,
            max_consecutive_errors=settings.queue_max_consecutive_errors,
            drain_timeout_seconds=settings.queue_drain_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the worker tasks."""
        if self._running:
            log.warning("worker_pool_already_running")
            return

        self._running = True
        for queue_name, handler in self._handlers.items():
            for i in range(self._workers_per_stage):
                task = asyncio.create_task(
                    self._worker_loop(
                        name=f"{queue_name}-{i}",
                        queue_name=queue_name,
                        handler=handler,
                    ),
                )
                self._workers.append(task)

        log.info(
            "worker_pool_started",
            stages=list(self._handlers),
            workers=len(self._workers),
        )

    async def stop(self) -> None:
        """Stop all workers, letting in-flight batches finish first.

        Items of a batch still running when the drain timeout expires are
        lost with the cancelled task.
        """
        if not self._running:
            return

        log.info("worker_pool_stopping")
        self._running = False

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=self._drain_timeout)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            if pending:
                log.warning("worker_pool_cancelled_in_flight", workers=len(pending))

        self._workers.clear()
        log.info("worker_pool_stopped")

    @property
    def is_running(self) -> bool:
        """Whether the pool is running."""
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Return worker counts and per-stage success totals."""
        return {
            "running": self._running,
            "workers": len(self._workers),
            "stages": list(self._handlers),
            "processed": dict(self._processed),
        }

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _worker_loop(self, name: str, queue_name: str, handler: ItemHandler) -> None:
        """Poll *queue_name* and process batches until stopped.

        Args:
            name: Human-readable worker name for logging.
            queue_name: The stage queue this worker drains.
            handler: The stage handler.
        """
        log.debug("worker_started", worker=name, queue=queue_name)
        consecutive_errors = 0

        while self._running:
            try:
                result = await self._queue.run_batch(queue_name, handler)
                consecutive_errors = 0
                self._processed[queue_name] += result.succeeded

                if result.dequeued:
                    log.debug(
                        "worker_batch_done",
                        worker=name,
                        succeeded=result.succeeded,
                        dead_lettered=result.dead_lettered,
                    )
                    continue

                # Queue empty, back off
                await asyncio.sleep(self._idle_poll)

            except asyncio.CancelledError:
                break
            except Exception:
                consecutive_errors += 1
                log.exception("worker_error", worker=name, consecutive_errors=consecutive_errors)
                await asyncio.sleep(self._backoff_for(consecutive_errors))

        log.debug("worker_stopped", worker=name)

    def _backoff_for(self, consecutive_errors: int) -> float:
        if consecutive_errors >= self._max_consecutive_errors:
            return self._error_backoff_max
        return self._error_backoff
