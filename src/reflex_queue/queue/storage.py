"""Redis-backed storage layer for the work queues.

Every mutation of a queue list is one of three indivisible units executed by
Redis itself (``MULTI``/``EXEC`` or a Lua script):

* push + expiry refresh (enqueue, dead-letter routing),
* read-N + trim-N (batch dequeue),
* conditional push (strict admission).

No in-process locking is used; correctness across producer and consumer
processes depends only on Redis executing each unit atomically.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator, Sequence

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from reflex_queue.logging import get_logger
from reflex_queue.queue.errors import QueueConnectionError

log = get_logger("reflex_queue.queue.storage")

# KEYS[1] = list key; ARGV[1] = element, ARGV[2] = ttl, ARGV[3] = max length.
# Returns the new length, or -1 when the list is already at max length.
_PUSH_IF_BELOW_SCRIPT = """
local depth = redis.call('LLEN', KEYS[1])
if depth >= tonumber(ARGV[3]) then
    return -1
end
local length = redis.call('RPUSH', KEYS[1], ARGV[1])
if tonumber(ARGV[2]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return length
"""


@contextlib.contextmanager
def _store_errors(operation: str, key: str) -> Iterator[None]:
    """Translate Redis connectivity failures into :class:`QueueConnectionError`."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        log.error("queue_store_unreachable", operation=operation, key=key, error=str(exc))
        raise QueueConnectionError(f"Queue store unreachable during {operation}: {exc}") from exc


def _decode(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


class QueueStore:
    """Atomic list primitives on a shared Redis instance."""

    def __init__(self, redis: aioredis.Redis) -> None:
        """Initialise with an existing async Redis client.

        Args:
            redis: A ``redis.asyncio.Redis`` client (shared with the rest of
                the application).
        """
        self._redis = redis
        self._push_if_below = redis.register_script(_PUSH_IF_BELOW_SCRIPT)

    @property
    def redis(self) -> aioredis.Redis:
        """The underlying Redis client."""
        return self._redis

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def push(self, key: str, element: str, ttl: int) -> int:
        """Append *element* to the tail of *key* and refresh its expiry.

        Args:
            key: Redis list key.
            element: Serialised element.
            ttl: Expiry in seconds; ``0`` leaves the key without expiry.

        Returns:
            The list length after the push.
        """
        with _store_errors("push", key):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.rpush(key, element)
                if ttl > 0:
                    pipe.expire(key, ttl)
                results = await pipe.execute()
        return int(results[0])

    async def push_if_below(self, key: str, element: str, ttl: int, max_length: int) -> int | None:
        """Append *element* only while the list is shorter than *max_length*.

        The length check and the push run as one server-side script.

        Returns:
            The list length after the push, or ``None`` when the list was full.
        """
        with _store_errors("push_if_below", key):
            result = await self._push_if_below(keys=[key], args=[element, ttl, max_length])
        length = int(result)
        return None if length < 0 else length

    async def delete(self, key: str) -> int:
        """Delete *key*, returning the number of elements it held."""
        with _store_errors("delete", key):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.llen(key)
                pipe.delete(key)
                length, _ = await pipe.execute()
        return int(length)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def pop_batch(self, key: str, count: int, ttl: int = 0) -> list[str]:
        """Atomically remove and return up to *count* elements from the head.

        ``LRANGE`` and ``LTRIM`` run in one transaction so concurrent callers
        always receive disjoint slices of the list.  When *ttl* is positive the
        expiry of whatever remains is refreshed in the same transaction;
        ``EXPIRE`` is a no-op once the trim has emptied (and so deleted) the
        key.

        Returns:
            Raw elements, oldest first.  Never blocks; may be empty.
        """
        if count <= 0:
            return []
        with _store_errors("pop_batch", key):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrange(key, 0, count - 1)
                pipe.ltrim(key, count, -1)
                if ttl > 0:
                    pipe.expire(key, ttl)
                results = await pipe.execute()
        return [_decode(raw) for raw in results[0] or []]

    async def peek(self, key: str, count: int = 1) -> list[str]:
        """Return up to *count* head elements without removing them."""
        if count <= 0:
            return []
        with _store_errors("peek", key):
            raw_items = await self._redis.lrange(key, 0, count - 1)
        return [_decode(raw) for raw in raw_items]

    async def length(self, key: str) -> int:
        """Return the current length of *key*."""
        with _store_errors("length", key):
            return int(await self._redis.llen(key))

    async def lengths(self, keys: Sequence[str]) -> list[int]:
        """Return the lengths of several lists in one round trip."""
        if not keys:
            return []
        with _store_errors("lengths", ",".join(keys)):
            async with self._redis.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.llen(key)
                results = await pipe.execute()
        return [int(n) for n in results]
