"""Redis client factory.

Builds pooled ``redis.asyncio`` clients for the queue subsystem.  Queue lists
may live on a dedicated Redis (``REDIS_QUEUE_URL``); otherwise the default
``REDIS_URL`` is used.

Command retries are disabled.  Queue writes and the read+trim dequeue are not
idempotent, so a transaction whose reply was lost must not be replayed; a
broken connection is simply re-established on the next call.
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError

from reflex_queue.config import Settings
from reflex_queue.logging import get_logger

log = get_logger("reflex_queue.redis_client")


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Create a pooled async Redis client for queue storage.

    Connections are drawn from a blocking pool so that a burst of workers
    waits for a free connection (up to ``redis_pool_timeout_seconds``)
    instead of opening unbounded sockets.

    Args:
        settings: Application settings.

    Returns:
        A ``redis.asyncio.Redis`` client returning ``str`` values.
    """
    pool = aioredis.BlockingConnectionPool.from_url(
        settings.queue_redis_url,
        max_connections=settings.redis_pool_size,
        timeout=settings.redis_pool_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        retry=Retry(NoBackoff(), 0),
        decode_responses=True,
    )
    client = aioredis.Redis(connection_pool=pool)
    log.debug(
        "redis_client_created",
        pool_size=settings.redis_pool_size,
        dedicated_queue_url=settings.redis_queue_url is not None,
    )
    return client


async def ping(client: aioredis.Redis) -> bool:
    """Return whether Redis answers a PING."""
    try:
        return bool(await client.ping())
    except RedisError as e:
        log.warning("redis_ping_failed", error=str(e))
        return False
