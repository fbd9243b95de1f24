"""Claim identity: deterministic claim ids and the per-user pending claim."""

import hashlib
import time
from typing import Callable

import redis.asyncio as aioredis

from metering.core.logging import get_logger
from metering.models.pending_claim import PendingClaim

log = get_logger(__name__)

KEY_PREFIX = "metering:"
DEFAULT_TTL_SECONDS = 60 * 60  # safety cleanup


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_claim_id(user_did: str, batch_start_time: int) -> str:
    """Same (user_did, batch_start_time) always yields the same id, so retries never file a second claim."""
    digest = hashlib.sha256(f"{user_did}:{batch_start_time}".encode("utf-8")).hexdigest()
    return f"claim_{digest}"


def chunk_claim_id(claim_id: str, split_index: int) -> str:
    """External id of one split; split 0 is the logical claim itself."""
    return claim_id if split_index == 0 else f"{claim_id}_{split_index}"


def pending_claim_key(user_did: str) -> str:
    return f"{KEY_PREFIX}{user_did}:pending_claim"


class ClaimIdentityManager:
    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def get_pending_claim(self, user_did: str) -> PendingClaim | None:
        data = await self.redis.get(pending_claim_key(user_did))
        return PendingClaim.model_validate_json(data) if data else None

    async def set_pending_claim(
        self,
        user_did: str,
        claim_id: str,
        amount: float,
        batch_start_time: int | None = None,
        settled_splits: int = 0,
    ) -> PendingClaim:
        now = self.clock()
        claim = PendingClaim(
            claim_id=claim_id,
            amount=amount,
            timestamp=now,
            batch_start_time=batch_start_time if batch_start_time is not None else now,
            settled_splits=settled_splits,
        )
        await self.redis.set(pending_claim_key(user_did), claim.model_dump_json(), ex=self.ttl_seconds)
        return claim

    async def update_pending_claim_amount(self, user_did: str, new_amount: float) -> PendingClaim | None:
        """Change the amount but keep claim id and batch start time."""
        pending = await self.get_pending_claim(user_did)
        if not pending:
            log.warning("pending_claim_missing", user_did=user_did, action="update_amount")
            return None
        updated = await self.set_pending_claim(
            user_did,
            pending.claim_id,
            new_amount,
            pending.batch_start_time,
            pending.settled_splits,
        )
        log.debug(
            "pending_claim_amount_updated",
            user_did=user_did,
            claim_id=pending.claim_id,
            old_amount=pending.amount,
            new_amount=new_amount,
        )
        return updated

    async def get_or_create_pending_claim(self, user_did: str, current_held_amount: float) -> str:
        """Return the claim id to settle under; usage keeps accruing into one claim across ticks."""
        pending = await self.get_pending_claim(user_did)
        if pending:
            if pending.amount != current_held_amount:
                await self.update_pending_claim_amount(user_did, current_held_amount)
            return pending.claim_id

        batch_start_time = self.clock()
        claim_id = generate_claim_id(user_did, batch_start_time)
        await self.set_pending_claim(user_did, claim_id, current_held_amount, batch_start_time)
        log.debug("pending_claim_created", user_did=user_did, claim_id=claim_id, amount=current_held_amount)
        return claim_id

    async def mark_split_settled(self, user_did: str, split_index: int) -> None:
        """Record that splits up to and including split_index are settled."""
        pending = await self.get_pending_claim(user_did)
        if not pending:
            log.warning("pending_claim_missing", user_did=user_did, action="mark_split_settled")
            return
        await self.set_pending_claim(
            user_did,
            pending.claim_id,
            pending.amount,
            pending.batch_start_time,
            max(pending.settled_splits, split_index + 1),
        )

    async def clear_pending_claim(self, user_did: str) -> None:
        await self.redis.delete(pending_claim_key(user_did))
