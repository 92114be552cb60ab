"""Redis caching utilities for FieldCash.

Provides a decorator for caching expensive read queries (finance
dashboards) and tenant-scoped invalidation.  Uses Redis so every
backend instance sees the same cache; when Redis is unreachable the
decorated function simply runs uncached.
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from app.config import settings
from app.tenancy import _tenant_ctx

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_connect_timeout=1,
            # Fail fast; callers fall back to the database
            retry=Retry(NoBackoff(), 1),
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(*args, **kwargs) -> str:
    """Generate a cache key from function arguments.

    Creates a deterministic hash from function name and arguments.
    """
    if not args and not kwargs:
        return "default"

    key_data = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True)
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return key_hash


def _serialize(result):
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list) and result and hasattr(result[0], "model_dump"):
        return [item.model_dump(mode="json") for item in result]
    return result


def cached(
    ttl: int = 300,
    prefix: str = "cache",
    key_builder: Optional[Callable] = None,
):
    """Decorator to cache function results in Redis.

    Args:
        ttl: Time-to-live in seconds (default: 300 = 5 minutes)
        prefix: Cache key prefix for namespacing
        key_builder: Custom function to build cache key from args/kwargs

    Example:
        @cached(ttl=60, prefix="deposits")
        async def deposit_summary(db: AsyncSession, work_date: date | None = None):
            # ... aggregate query ...
            return summary

    Cache keys: t:{tenant}:{prefix}:{function_name}:{args_hash}
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            # Build cache key; the tenant schema is always part of it
            tenant = _tenant_ctx.get()  # None when outside tenant context
            if key_builder:
                key = key_builder(*args, **kwargs)
                if tenant:
                    key = f"t:{tenant}:{key}"
            else:
                # Only simple kwargs take part in the key; injected
                # dependencies (sessions, users) are skipped
                cache_kwargs = {}
                for k, v in kwargs.items():
                    if k.startswith("_"):
                        continue
                    if isinstance(v, (int, str, bool, float, type(None))):
                        cache_kwargs[k] = v
                    elif isinstance(v, (date, datetime)):
                        cache_kwargs[k] = v.isoformat()
                key_hash = cache_key(**cache_kwargs)
                if tenant:
                    key = f"t:{tenant}:{prefix}:{func.__name__}:{key_hash}"
                else:
                    key = f"{prefix}:{func.__name__}:{key_hash}"

            try:
                redis_client = await get_redis()
                cached_value = await redis_client.get(key)
            except redis.RedisError as e:
                logger.warning(f"Redis error (falling back to uncached): {e}")
                return await func(*args, **kwargs)

            if cached_value:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(cached_value)

            logger.debug(f"Cache MISS: {key}")
            result = await func(*args, **kwargs)

            try:
                await redis_client.setex(key, ttl, json.dumps(_serialize(result)))
            except redis.RedisError as e:
                logger.warning(f"Redis error while storing {key}: {e}")

            return result

        return wrapper

    return decorator


async def invalidate_cache(pattern: str):
    """Invalidate cache keys matching a pattern, scoped to the current tenant.

    Automatically prepends the tenant prefix so callers don't need to know
    about the key structure.  If no tenant context is active, the pattern
    is used as-is (for public-scope invalidation).

    Args:
        pattern: Redis key pattern (e.g., "deposits:*")
    """
    try:
        tenant = _tenant_ctx.get()
        scoped_pattern = f"t:{tenant}:{pattern}" if tenant else pattern

        redis_client = await get_redis()
        keys = []
        async for key in redis_client.scan_iter(match=scoped_pattern):
            keys.append(key)

        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {scoped_pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")
