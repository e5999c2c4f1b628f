"""Redis client for escrow-creation idempotency keys.

Usage:
    from escrow_exchange.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from escrow_exchange.config import get_settings
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

PENDING = "pending"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def set_redis(client: aioredis.Redis | None) -> None:
    """Install an already-built client (tests, scripts)."""
    global _redis_client
    _redis_client = client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _key(scope: str, key: str) -> str:
    return f"idempotency:{scope}:{key}"


async def claim_idempotency(scope: str, key: str) -> bool:
    """Atomically claim an idempotency key (SET NX with TTL).

    Returns True if this caller now owns the key, False if it was already claimed.
    """
    settings = get_settings()
    redis = get_redis()
    claimed = await redis.set(
        _key(scope, key),
        PENDING,
        nx=True,
        ex=settings.redis_idempotency_ttl_seconds,
    )
    return bool(claimed)


async def get_idempotency_result(scope: str, key: str) -> str | None:
    """Return the stored result for a claimed key, or None while it is pending."""
    value = await get_redis().get(_key(scope, key))
    if value is None or value == PENDING:
        return None
    return value


async def complete_idempotency(scope: str, key: str, result: str) -> None:
    """Record the result of the operation that owns the key."""
    settings = get_settings()
    await get_redis().set(
        _key(scope, key),
        result,
        ex=settings.redis_idempotency_ttl_seconds,
    )


async def release_idempotency(scope: str, key: str) -> None:
    """Drop a claim whose operation failed so the caller can retry with the same key."""
    await get_redis().delete(_key(scope, key))
