"""Reconciler: settle held amounts that crossed the claim threshold."""

import math
from dataclasses import dataclass
from enum import Enum

import redis.asyncio as aioredis

from metering.core.exceptions import ConfigurationError
from metering.core.logging import get_logger
from metering.core.redis import user_lock
from metering.services.claims import ClaimIdentityManager, chunk_claim_id
from metering.services.ledger import SETTLE_EPSILON, MeteringLedger
from metering.services.splits import calculate_splits
from metering.services.subscriptions import get_subscription
from metering.workflows.settlement import SettlementRequest, SettlementSaga, settlement_thread_id

log = get_logger(__name__)


class UserOutcome(str, Enum):
    SETTLED = "settled"
    SKIPPED = "skipped"


@dataclass
class TickReport:
    processed: int = 0
    settled: int = 0
    skipped: int = 0
    failed: int = 0
    overlapped: bool = False


class Reconciler:
    def __init__(
        self,
        redis: aioredis.Redis,
        ledger: MeteringLedger,
        claims: ClaimIdentityManager,
        saga: SettlementSaga,
        *,
        denom: str,
        grantee_address: str,
        min_claim_threshold: float = 5000,
        max_claim_amounts: dict[str, float] | None = None,
        user_lock_timeout: float = 600.0,
    ) -> None:
        self.redis = redis
        self.ledger = ledger
        self.claims = claims
        self.saga = saga
        self.denom = denom
        self.grantee_address = grantee_address
        self.min_claim_threshold = min_claim_threshold
        self.max_claim_amounts = max_claim_amounts or {}
        self.user_lock_timeout = user_lock_timeout
        self._tick_in_progress = False

    def max_claim_amount(self) -> float:
        amount = self.max_claim_amounts.get(self.denom)
        if not amount:
            raise ConfigurationError(f"No max claim amount configured for denom {self.denom}", details={"denom": self.denom})
        return amount

    async def run_tick(self) -> TickReport:
        """One reconciliation pass. Returns immediately if a pass is already running."""
        if self._tick_in_progress:
            log.warning("reconcile_tick_overlap")
            return TickReport(overlapped=True)
        self._tick_in_progress = True
        try:
            return await self._tick()
        finally:
            self._tick_in_progress = False

    async def _tick(self) -> TickReport:
        report = TickReport()
        users = await self.ledger.list_users_with_held_amount(self.min_claim_threshold)
        log.info("reconcile_tick_start", users=len(users), threshold=self.min_claim_threshold)
        if not users:
            return report
        max_amount = self.max_claim_amount()

        for user_did, _ in users:
            report.processed += 1
            try:
                async with user_lock(self.redis, user_did, timeout=self.user_lock_timeout):
                    outcome = await self.process_user(user_did, max_amount)
            except Exception as e:
                # held amount and pending claim stay as they are; next tick resumes
                report.failed += 1
                log.exception("reconcile_user_failed", user_did=user_did, error=str(e))
                continue
            if outcome is UserOutcome.SETTLED:
                report.settled += 1
            else:
                report.skipped += 1

        log.info(
            "reconcile_tick_done",
            processed=report.processed,
            settled=report.settled,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    async def process_user(self, user_did: str, max_amount: float) -> UserOutcome:
        # re-read under the user lock; the scan value may be stale
        held = await self.ledger.get_held_amount(user_did)
        if held < self.min_claim_threshold:
            log.debug("held_below_threshold", user_did=user_did, held_amount=held, threshold=self.min_claim_threshold)
            return UserOutcome.SKIPPED

        subscription = await get_subscription(self.redis, user_did)
        if not subscription:
            log.warning("subscription_missing", user_did=user_did)
            return UserOutcome.SKIPPED
        collection_id = subscription.claim_collections.oracle_claims_collection_id
        if not collection_id:
            log.warning("oracle_claims_collection_missing", user_did=user_did)
            return UserOutcome.SKIPPED
        if subscription.total_credits < held:
            log.warning("insufficient_credits", user_did=user_did, held_amount=held, total_credits=subscription.total_credits)
            return UserOutcome.SKIPPED

        # identity follows the total held amount, not the splits
        claim_id = await self.claims.get_or_create_pending_claim(user_did, held)
        while not await self._settle_planned_chunks(user_did, claim_id, held, max_amount, collection_id, subscription.admin_address):
            # replan what is still held, numbering new chunks after the settled ones
            held = await self.ledger.get_held_amount(user_did)
            if held <= SETTLE_EPSILON:
                break

        await self.claims.clear_pending_claim(user_did)
        log.info("user_settled", user_did=user_did, claim_id=claim_id)
        return UserOutcome.SETTLED

    async def _settle_planned_chunks(
        self,
        user_did: str,
        claim_id: str,
        held: float,
        max_amount: float,
        collection_id: str,
        admin_address: str,
    ) -> bool:
        """Settle one plan in order. False when the plan went stale and must be redone."""
        pending = await self.claims.get_pending_claim(user_did)
        offset = pending.settled_splits if pending else 0
        chunks = calculate_splits(held, max_amount)
        log.info("settling_user", user_did=user_did, claim_id=claim_id, held_amount=held, chunks=len(chunks), first_split=offset)

        for i, amount in enumerate(chunks):
            split_index = offset + i
            request = SettlementRequest(
                user_did=user_did,
                claim_id=chunk_claim_id(claim_id, split_index),
                logical_claim_id=claim_id,
                split_index=split_index,
                amount=amount,
                denom=self.denom,
                collection_id=collection_id,
                grantee_address=self.grantee_address,
                admin_address=admin_address,
            )
            result = await self.saga.settle(request)
            thread_id = settlement_thread_id(user_did, claim_id, split_index)
            settled = await self.ledger.settle_chunk(user_did, thread_id, result.amount)
            await self.claims.mark_split_settled(user_did, split_index)
            log.info(
                "chunk_settled",
                user_did=user_did,
                claim_id=request.claim_id,
                split_index=split_index,
                amount=result.amount,
                cid=result.cid,
                held_left=settled.held_left,
            )
            if not settled.applied:
                # deducted before a crash; held already excludes this chunk
                return False
            if not math.isclose(result.amount, amount):
                # resumed chunk settled the amount reserved by an earlier attempt
                log.info("chunk_amount_pinned", user_did=user_did, split_index=split_index, planned=amount, settled=result.amount)
                return False
        return True
