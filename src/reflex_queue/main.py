"""Main entry point for the Reflex work queue."""

import asyncio
import contextlib
import signal
from collections.abc import Mapping

from reflex_queue.config import get_settings
from reflex_queue.logging import get_logger, setup_logging
from reflex_queue.queue.manager import WorkQueue
from reflex_queue.queue.models import build_queue_config
from reflex_queue.queue.monitor import QueueMonitor
from reflex_queue.queue.processors import ItemHandler
from reflex_queue.queue.storage import QueueStore
from reflex_queue.queue.workers import StageWorkerPool
from reflex_queue.redis_client import create_redis_client, ping


async def main(handlers: Mapping[str, ItemHandler] | None = None) -> None:
    """Run the queue monitor and, when handlers are given, the stage workers.

    Args:
        handlers: Stage handlers keyed by queue name.  Without handlers the
            process only reports queue depths.
    """
    setup_logging()
    log = get_logger("reflex_queue.main")

    settings = get_settings()
    log.info(
        "starting_reflex_queue",
        environment=settings.environment,
        strict_admission=settings.queue_strict_admission,
    )

    redis = create_redis_client(settings)
    if not await ping(redis):
        log.warning("redis_unreachable_at_startup")

    config = build_queue_config(settings)
    work_queue = WorkQueue(
        QueueStore(redis),
        config,
        strict_admission=settings.queue_strict_admission,
    )
    log.info("queue_initialized", queues=list(config))

    monitor = QueueMonitor(
        work_queue.monitor,
        interval_seconds=settings.queue_monitor_interval_seconds,
        silent_reports=settings.queue_monitor_silent_reports,
        depth_delta=settings.queue_monitor_depth_delta,
    )
    pool: StageWorkerPool | None = None
    if handlers:
        pool = StageWorkerPool.from_settings(work_queue, handlers, settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    monitor.start()
    if pool is not None:
        pool.start()

    try:
        await stop_event.wait()
        log.info("shutdown_requested")
    finally:
        if pool is not None:
            await pool.stop()
        await monitor.stop()
        await redis.aclose()
        log.info("reflex_queue_stopped")


def run() -> None:
    """Run the application."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
