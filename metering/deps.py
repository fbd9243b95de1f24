"""Shared FastAPI dependencies."""

import redis.asyncio as aioredis
from fastapi import Depends, Request

from metering.core.config import get_settings
from metering.core.exceptions import UnauthorizedError
from metering.core.security import verify_internal_token
from metering.services.ledger import MeteringLedger
from metering.services.usage import UsageMeter

INTERNAL_TOKEN_HEADER = "X-Internal-Token"


def get_redis(request: Request) -> aioredis.Redis:
    """The pool created at startup; one per process."""
    return request.app.state.redis


def get_ledger(redis: aioredis.Redis = Depends(get_redis)) -> MeteringLedger:
    return MeteringLedger(redis, disable_credits=get_settings().disable_credits)


async def require_internal(request: Request) -> None:
    """Dependency: only the billing service (shared token) may call internal routes."""
    token = request.headers.get(INTERNAL_TOKEN_HEADER)
    if not verify_internal_token(token, get_settings().internal_api_token):
        raise UnauthorizedError("Invalid internal token")


def get_usage_meter(user_did: str, ledger: MeteringLedger = Depends(get_ledger)) -> UsageMeter:
    """Meter for the {user_did} path parameter."""
    return UsageMeter(ledger, user_did, network=get_settings().network)
