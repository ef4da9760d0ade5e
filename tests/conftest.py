"""Pytest fixtures for reflex_queue tests."""

from __future__ import annotations

import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from reflex_queue.queue.models import QueueConfig, QueueDefinition
from reflex_queue.queue.storage import QueueStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep Settings independent of the developer's environment."""
    os.environ.setdefault("LOG_TO_FILE", "false")
    os.environ.setdefault("ENVIRONMENT", "test")

    from reflex_queue.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


class RedisLists:
    """In-memory list keyspace backing the mocked Redis client.

    Implements just the list commands the queue store issues, with Redis
    index semantics (inclusive stop, negative indices from the tail).
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}

    def seed(self, key: str, *values: str) -> None:
        self.lists.setdefault(key, []).extend(values)

    @staticmethod
    def _slice(values: list[str], start: int, stop: int) -> list[str]:
        length = len(values)
        if start < 0:
            start += length
        if stop < 0:
            stop += length
        return values[max(start, 0) : stop + 1]

    def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(self._slice(self.lists.get(key, []), start, stop))

    def ltrim(self, key: str, start: int, stop: int) -> bool:
        remaining = self._slice(self.lists.get(key, []), start, stop)
        if remaining:
            self.lists[key] = remaining
        else:
            self.lists.pop(key, None)
            self.ttls.pop(key, None)
        return True

    def expire(self, key: str, ttl: int) -> int:
        if key not in self.lists:
            return 0
        self.ttls[key] = ttl
        return 1

    def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.lists.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def push_if_below(self, keys: list[str], args: list[Any]) -> int:
        key = keys[0]
        element, ttl, max_length = args
        if self.llen(key) >= int(max_length):
            return -1
        length = self.rpush(key, element)
        if int(ttl) > 0:
            self.expire(key, int(ttl))
        return length


_PIPELINE_COMMANDS = ("rpush", "lrange", "ltrim", "expire", "llen", "delete")


def make_redis(state: RedisLists) -> MagicMock:
    """Build a mock ``redis.asyncio.Redis`` whose commands act on *state*.

    ``pipeline()`` returns a buffering pipeline; the buffered commands are
    applied in order when ``execute()`` is awaited, mirroring ``MULTI``/``EXEC``.
    Every pipeline created is recorded on ``redis.pipelines``.
    """
    redis = MagicMock()
    redis.pipelines = []

    def _pipeline(transaction: bool = True) -> MagicMock:
        pipe = MagicMock()
        pipe.transaction = transaction
        pipe.commands = []

        def _buffer(name: str):
            def _command(*args: Any) -> MagicMock:
                pipe.commands.append((name, args))
                return pipe

            return _command

        for name in _PIPELINE_COMMANDS:
            setattr(pipe, name, MagicMock(side_effect=_buffer(name)))

        pipe.execute = AsyncMock(
            side_effect=lambda: [getattr(state, name)(*args) for name, args in pipe.commands]
        )
        pipe.__aenter__ = AsyncMock(return_value=pipe)
        pipe.__aexit__ = AsyncMock(return_value=False)
        redis.pipelines.append(pipe)
        return pipe

    redis.pipeline = MagicMock(side_effect=_pipeline)
    redis.llen = AsyncMock(side_effect=state.llen)
    redis.lrange = AsyncMock(side_effect=state.lrange)
    redis.ping = AsyncMock(return_value=True)
    redis.register_script = MagicMock(
        return_value=AsyncMock(side_effect=lambda keys, args: state.push_if_below(keys, args))
    )
    return redis


@pytest.fixture
def redis_lists() -> RedisLists:
    """Empty in-memory list keyspace."""
    return RedisLists()


@pytest.fixture
def mock_redis(redis_lists: RedisLists) -> MagicMock:
    """Mock async Redis client backed by ``redis_lists``."""
    return make_redis(redis_lists)


@pytest.fixture
def queue_store(mock_redis: MagicMock) -> QueueStore:
    """QueueStore over the mock Redis client."""
    return QueueStore(mock_redis)


@pytest.fixture
def queue_config() -> QueueConfig:
    """Small queue table used across queue tests."""
    return QueueConfig(
        [
            QueueDefinition(
                name="raw_events",
                key="queue:events:raw",
                max_size=5,
                batch_size=2,
                ttl=60,
            ),
            QueueDefinition(
                name="event_processing",
                key="queue:events:processing",
                max_size=1,
                batch_size=10,
                ttl=60,
            ),
        ],
        dead_letter_key="queue:dead_letter",
        dead_letter_ttl=120,
    )
