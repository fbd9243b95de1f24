"""Cron: settle held amounts that crossed the claim threshold."""

import uuid

import redis.asyncio as aioredis

from metering.core.config import Settings, get_settings
from metering.core.logging import bind_tick_id, clear_log_context, get_logger
from metering.services.chain import HttpChainClient, HttpRecordStore
from metering.services.claims import ClaimIdentityManager
from metering.services.ledger import MeteringLedger
from metering.services.notifications import SubscriptionNotifier
from metering.services.reconciler import Reconciler, TickReport
from metering.storage.base import get_checkpoint_store
from metering.workflows.saga import RetryPolicy
from metering.workflows.settlement import SettlementSaga

log = get_logger(__name__)

RECONCILE_LOCK_KEY = "metering:reconcile:lock"


def build_reconciler(redis: aioredis.Redis, settings: Settings | None = None) -> Reconciler:
    s = settings or get_settings()
    saga = SettlementSaga(
        chain=HttpChainClient(s.chain_gateway_url, signer_address=s.oracle_address, timeout=s.http_timeout_seconds),
        records=HttpRecordStore(s.record_store_url, timeout=s.http_timeout_seconds),
        notifier=SubscriptionNotifier(s.subscription_url, timeout=s.http_timeout_seconds),
        store=get_checkpoint_store(redis),
        retry=RetryPolicy(
            max_attempts=s.retry_max_attempts,
            backoff_factor=s.retry_backoff_factor,
            initial_interval=s.retry_initial_interval,
        ),
    )
    return Reconciler(
        redis,
        MeteringLedger(redis, disable_credits=s.disable_credits),
        ClaimIdentityManager(redis, ttl_seconds=s.pending_claim_ttl_seconds),
        saga,
        denom=s.denom,
        grantee_address=s.oracle_address,
        min_claim_threshold=s.min_claim_threshold,
        max_claim_amounts=s.max_claim_amounts,
    )


async def run_reconcile_held_amounts(reconciler: Reconciler, redis: aioredis.Redis) -> TickReport:
    """One tick, guarded by a Redis lock so ticks never overlap across workers."""
    bind_tick_id(uuid.uuid4().hex[:12])
    lock = redis.lock(RECONCILE_LOCK_KEY, timeout=30 * 60)
    try:
        if not await lock.acquire(blocking=False):
            log.warning("reconcile_tick_locked")
            return TickReport(overlapped=True)
        try:
            return await reconciler.run_tick()
        finally:
            await lock.release()
    finally:
        clear_log_context()
