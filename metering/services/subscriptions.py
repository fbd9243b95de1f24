"""Subscription snapshot cache on Redis (written by the billing service, read by the reconciler)."""

import redis.asyncio as aioredis

from metering.models.subscription import SubscriptionSnapshot

KEY_PREFIX = "metering:"


def subscription_key(user_did: str) -> str:
    return f"{KEY_PREFIX}{user_did}:subscription"


async def set_subscription(redis: aioredis.Redis, user_did: str, snapshot: SubscriptionSnapshot) -> None:
    await redis.set(subscription_key(user_did), snapshot.model_dump_json())


async def get_subscription(redis: aioredis.Redis, user_did: str) -> SubscriptionSnapshot | None:
    data = await redis.get(subscription_key(user_did))
    return SubscriptionSnapshot.model_validate_json(data) if data else None
