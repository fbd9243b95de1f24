"""Shared Redis connection pool, created once and injected into services."""

import redis.asyncio as aioredis

from metering.core.config import get_settings


def create_redis(url: str | None = None) -> aioredis.Redis:
    return aioredis.from_url(url or get_settings().redis_url, decode_responses=True)


def user_lock(redis: aioredis.Redis, user_did: str, timeout: float = 300.0):
    """Per-user lock serializing settlement and balance overrides for one user."""
    return redis.lock(f"metering:{user_did}:lock", timeout=timeout, blocking_timeout=30.0)
