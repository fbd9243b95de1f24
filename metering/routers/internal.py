from fastapi import APIRouter, Depends
from pydantic import BaseModel

from metering.core.redis import user_lock
from metering.deps import get_ledger, get_redis, get_usage_meter, require_internal
from metering.models.subscription import SubscriptionSnapshot
from metering.services.claims import ClaimIdentityManager
from metering.services.ledger import MeteringLedger
from metering.services.subscriptions import set_subscription
from metering.services.usage import UsageMeter

router = APIRouter(dependencies=[Depends(require_internal)])


class BalanceOverride(BaseModel):
    balance: float


class LLMUsage(BaseModel):
    prompt_tokens: int | None = None
    total_tokens: int | None = None


@router.put("/users/{user_did}/subscription")
async def put_subscription(user_did: str, body: SubscriptionSnapshot, redis=Depends(get_redis)):
    """Store the subscription snapshot the reconciler settles against."""
    await set_subscription(redis, user_did, body)
    return {"user_did": user_did, "stored": True}


@router.put("/users/{user_did}/balance")
async def override_balance(
    user_did: str,
    body: BalanceOverride,
    redis=Depends(get_redis),
    ledger: MeteringLedger = Depends(get_ledger),
):
    """Sync the balance to the confirmed balance minus held usage; 402 when held exceeds it."""
    async with user_lock(redis, user_did):
        balance = await ledger.override_balance(user_did, body.balance)
    return {"user_did": user_did, "balance": balance}


@router.get("/users/{user_did}/ledger")
async def ledger_state(user_did: str, redis=Depends(get_redis), ledger: MeteringLedger = Depends(get_ledger)):
    """Current balance, held amount and pending claim for a user."""
    pending = await ClaimIdentityManager(redis).get_pending_claim(user_did)
    return {
        "user_did": user_did,
        "balance": await ledger.get_balance(user_did),
        "held_amount": await ledger.get_held_amount(user_did),
        "pending_claim": pending.model_dump() if pending else None,
    }


@router.post("/users/{user_did}/usage/check")
async def check_usage(user_did: str, meter: UsageMeter = Depends(get_usage_meter)):
    """Called before an LLM call; 429 when the user has no credits left."""
    remaining = await meter.require_credits()
    return {"user_did": user_did, "remaining": remaining}


@router.post("/users/{user_did}/usage")
async def record_usage(user_did: str, body: LLMUsage, meter: UsageMeter = Depends(get_usage_meter)):
    """Charge the token usage of a finished LLM call and hold it for settlement."""
    result = await meter.record_usage(body.model_dump())
    return {"user_did": user_did, "remaining": result.remaining}
