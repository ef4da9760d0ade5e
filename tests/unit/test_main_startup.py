"""Unit tests for main.py startup wiring.

Verifies that the entry point builds the work queue from settings, starts the
monitor (and the worker pool when handlers are given) and tears everything
down again on shutdown.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from reflex_queue.config import Settings


async def _run_until_started(coro, started: MagicMock) -> None:
    """Run *coro* until *started* was called, then cancel it."""
    task = asyncio.create_task(coro)
    for _ in range(200):
        if started.called:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestMainStartup:
    """Tests for main() startup and shutdown."""

    @pytest.mark.asyncio
    @patch("reflex_queue.main.StageWorkerPool")
    @patch("reflex_queue.main.QueueMonitor")
    @patch("reflex_queue.main.ping", new_callable=AsyncMock)
    @patch("reflex_queue.main.create_redis_client")
    @patch("reflex_queue.main.get_settings")
    @patch("reflex_queue.main.setup_logging")
    @patch("reflex_queue.main.get_logger")
    async def test_monitor_only_without_handlers(
        self,
        mock_get_logger,
        mock_setup_logging,
        mock_get_settings,
        mock_create_redis,
        mock_ping,
        mock_monitor_cls,
        mock_pool_cls,
    ) -> None:
        """Without handlers only the queue monitor runs."""
        from reflex_queue.main import main

        mock_get_settings.return_value = Settings(_env_file=None, queue_monitor_interval_seconds=7)
        mock_get_logger.return_value = MagicMock()
        redis = MagicMock()
        redis.aclose = AsyncMock()
        mock_create_redis.return_value = redis
        mock_ping.return_value = True
        monitor = MagicMock()
        monitor.stop = AsyncMock()
        mock_monitor_cls.return_value = monitor

        await _run_until_started(main(), monitor.start)

        mock_setup_logging.assert_called_once()
        assert mock_monitor_cls.call_args[1]["interval_seconds"] == 7
        mock_pool_cls.from_settings.assert_not_called()
        monitor.stop.assert_awaited_once()
        redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("reflex_queue.main.StageWorkerPool")
    @patch("reflex_queue.main.QueueMonitor")
    @patch("reflex_queue.main.ping", new_callable=AsyncMock)
    @patch("reflex_queue.main.create_redis_client")
    @patch("reflex_queue.main.get_settings")
    @patch("reflex_queue.main.setup_logging")
    @patch("reflex_queue.main.get_logger")
    async def test_starts_worker_pool_with_handlers(
        self,
        mock_get_logger,
        mock_setup_logging,
        mock_get_settings,
        mock_create_redis,
        mock_ping,
        mock_monitor_cls,
        mock_pool_cls,
    ) -> None:
        """Handlers start a worker pool, which is stopped on shutdown."""
        from reflex_queue.main import main

        mock_get_settings.return_value = Settings(_env_file=None)
        mock_logger = MagicMock()
        mock_get_logger.return_value = mock_logger
        redis = MagicMock()
        redis.aclose = AsyncMock()
        mock_create_redis.return_value = redis
        mock_ping.return_value = False
        monitor = MagicMock()
        monitor.stop = AsyncMock()
        mock_monitor_cls.return_value = monitor
        pool = MagicMock()
        pool.stop = AsyncMock()
        mock_pool_cls.from_settings.return_value = pool
        handlers = {"raw_events": AsyncMock()}

        await _run_until_started(main(handlers), pool.start)

        work_queue, passed_handlers, _ = mock_pool_cls.from_settings.call_args[0]
        assert passed_handlers is handlers
        assert list(work_queue.config) == [
            "raw_events",
            "event_processing",
            "metric_calculation",
            "anomaly_detection",
        ]
        mock_logger.warning.assert_called_once_with("redis_unreachable_at_startup")
        pool.stop.assert_awaited_once()
        monitor.stop.assert_awaited_once()
        redis.aclose.assert_awaited_once()
