"""Settlement saga: reserve escrow, record the signed claim, commit it, notify billing."""

from typing import Any

from pydantic import BaseModel

from metering.core.exceptions import ConfigurationError, TransientExternalError
from metering.core.logging import get_logger
from metering.models.settlement_claim import SettlementClaim
from metering.services.chain import ChainClient, RecordStore, format_amount
from metering.services.notifications import SubscriptionNotifier
from metering.storage.base import CheckpointStore
from metering.workflows.saga import RetryPolicy, SagaRunner, SagaStatus, SagaStep

log = get_logger(__name__)


class SettlementRequest(BaseModel):
    user_did: str
    claim_id: str  # external id of this chunk
    logical_claim_id: str
    split_index: int = 0
    amount: float
    denom: str
    collection_id: str | None
    grantee_address: str
    admin_address: str = ""


def settlement_thread_id(user_did: str, claim_id: str, split_index: int) -> str:
    return f"{user_did}:{claim_id}:{split_index}"


class SettlementSaga:
    def __init__(
        self,
        chain: ChainClient,
        records: RecordStore,
        notifier: SubscriptionNotifier,
        store: CheckpointStore,
        retry: RetryPolicy | None = None,
        **runner_kwargs: Any,
    ) -> None:
        self.chain = chain
        self.records = records
        self.notifier = notifier
        self.runner = SagaRunner(
            [
                SagaStep("submit_intent", SagaStatus.INTENT_SENT, self.submit_intent),
                SagaStep("record_claim", SagaStatus.RECORDED, self.record_claim),
                SagaStep("commit_claim", SagaStatus.COMMITTED, self.commit_claim),
                SagaStep("notify_external", SagaStatus.NOTIFIED, self.notify_external),
            ],
            store,
            retry,
            **runner_kwargs,
        )

    async def submit_intent(self, ctx: dict[str, Any]) -> dict[str, Any]:
        req = SettlementRequest.model_validate(ctx["input"])
        if not req.collection_id:
            raise ConfigurationError("Claim collection id missing", details={"user_did": req.user_did})
        pinned = {"amount": req.amount, "denom": req.denom}
        if await self.chain.check_active_intent(req.collection_id, req.grantee_address):
            log.info("intent_reused", user_did=req.user_did, claim_id=req.claim_id)
            return {**pinned, "tx_hash": None, "reused": True}
        resp = await self.chain.reserve_escrow(req.amount, req.denom, req.collection_id)
        if resp.code != 0:
            raise TransientExternalError(
                f"Escrow reservation failed with code {resp.code}",
                details={"raw_log": resp.raw_log},
            )
        log.info("intent_sent", user_did=req.user_did, claim_id=req.claim_id, tx_hash=resp.tx_hash)
        return {**pinned, "tx_hash": resp.tx_hash, "reused": False}

    async def record_claim(self, ctx: dict[str, Any]) -> dict[str, Any]:
        req = SettlementRequest.model_validate(ctx["input"])
        intent = ctx["submit_intent"]
        claim = {
            "claim_id": req.claim_id,
            "logical_claim_id": req.logical_claim_id,
            "split_index": req.split_index,
            "user_did": req.user_did,
            "admin_address": req.admin_address,
            "amount": {"amount": format_amount(intent["amount"]), "denom": intent["denom"]},
            "intent_tx_hash": intent["tx_hash"],
        }
        cid = await self.records.save_signed_claim(claim, req.collection_id)
        return {"cid": cid}

    async def commit_claim(self, ctx: dict[str, Any]) -> dict[str, Any]:
        req = SettlementRequest.model_validate(ctx["input"])
        intent = ctx["submit_intent"]
        cid = ctx["record_claim"]["cid"]
        resp = await self.chain.commit_claim(req.claim_id, req.collection_id, intent["amount"], intent["denom"], cid)
        if resp.code != 0:
            if resp.already_committed:
                log.warning("claim_already_committed", claim_id=req.claim_id, raw_log=resp.raw_log)
                return {"tx_hash": resp.tx_hash, "already_committed": True}
            raise TransientExternalError(
                f"Claim submission failed with code {resp.code}",
                details={"raw_log": resp.raw_log},
            )
        log.info("claim_committed", user_did=req.user_did, claim_id=req.claim_id, tx_hash=resp.tx_hash)
        return {"tx_hash": resp.tx_hash, "already_committed": False}

    async def notify_external(self, ctx: dict[str, Any]) -> dict[str, Any]:
        req = SettlementRequest.model_validate(ctx["input"])
        resp = await self.notifier.claim_submitted(req.claim_id)
        if not resp.approved:
            log.warning("claim_not_approved", claim_id=req.claim_id, reason=resp.reason)
        return resp.model_dump()

    async def settle(self, request: SettlementRequest) -> SettlementClaim:
        thread_id = settlement_thread_id(request.user_did, request.logical_claim_id, request.split_index)
        ctx = await self.runner.run(thread_id, request.model_dump())
        intent = ctx["submit_intent"]
        return SettlementClaim(
            cid=ctx["record_claim"]["cid"],
            transaction_hash=ctx["commit_claim"]["tx_hash"],
            amount=intent["amount"],
            denom=intent["denom"],
        )

    async def status(self, user_did: str, logical_claim_id: str, split_index: int) -> SagaStatus:
        return await self.runner.status(settlement_thread_id(user_did, logical_claim_id, split_index))
