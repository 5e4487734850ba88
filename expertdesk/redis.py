"""Process-wide redis.asyncio client.

The API lifespan opens it. Code that only publishes best-effort events
uses ``get_redis_or_none`` so the seed script and tests run without Redis.
"""

import os

import redis.asyncio as aioredis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_client: aioredis.Redis | None = None


async def init_redis(url: str = REDIS_URL) -> aioredis.Redis:
    global _client
    client = aioredis.from_url(url, decode_responses=True)
    await client.ping()
    _client = client
    return client


def get_redis() -> aioredis.Redis:
    """Client for request-path code such as the rate limiter."""
    if _client is None:
        raise RuntimeError("Redis client is not open")
    return _client


def get_redis_or_none() -> aioredis.Redis | None:
    return _client


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
