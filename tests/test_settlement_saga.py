"""Settlement saga against in-process chain, record store and webhook fakes."""

import pytest

from metering.core.exceptions import ConfigurationError, SagaFailed
from metering.workflows.saga import SagaStatus
from metering.workflows.settlement import SettlementRequest, settlement_thread_id

pytestmark = pytest.mark.asyncio

DID = "did:ixo:alice"


def request(**overrides) -> SettlementRequest:
    data = {
        "user_did": DID,
        "claim_id": "claim_abc",
        "logical_claim_id": "claim_abc",
        "split_index": 0,
        "amount": 5000,
        "denom": "uixo",
        "collection_id": "42",
        "grantee_address": "ixo1oracle",
        "admin_address": "ixo1admin",
    }
    data.update(overrides)
    return SettlementRequest(**data)


async def test_happy_path(saga, chain, records, notify):
    claim = await saga.settle(request())
    assert claim.cid == "cid-claim_abc"
    assert claim.transaction_hash == "claim-tx-1"
    assert claim.amount == 5000
    assert claim.denom == "uixo"
    assert chain.reservations == [(5000, "uixo", "42")]
    assert chain.commits[0]["cid"] == "cid-claim_abc"
    assert records.saved["claim_abc"]["amount"] == {"amount": "5000", "denom": "uixo"}
    assert notify.claim_ids == ["claim_abc"]
    assert await saga.status(DID, "claim_abc", 0) == SagaStatus.DONE


async def test_resume_after_commit_failure_skips_intent_and_record(saga, chain, records, notify):
    chain.commit_failures = 3  # exhausts the budget
    with pytest.raises(SagaFailed) as exc:
        await saga.settle(request())
    assert exc.value.step == "commit_claim"
    assert await saga.status(DID, "claim_abc", 0) == SagaStatus.RECORDED

    claim = await saga.settle(request())
    assert chain.intent_checks == 1
    assert len(chain.reservations) == 1
    assert records.calls == 1
    assert len(chain.commits) == 1
    assert notify.claim_ids == ["claim_abc"]
    assert claim.cid == "cid-claim_abc"


async def test_transient_record_failure_still_commits_once(saga, chain, records):
    records.failures = 1
    claim = await saga.settle(request())
    assert records.calls == 2
    assert len(chain.reservations) == 1
    assert len(chain.commits) == 1
    assert claim.transaction_hash == "claim-tx-1"


async def test_existing_intent_is_reused(saga, chain):
    chain.active_intent = True
    await saga.settle(request())
    assert chain.reservations == []
    assert len(chain.commits) == 1


async def test_already_committed_counts_as_success(saga, chain, notify):
    chain.commit_failures = 1
    chain.commit_raw_log = "claim already exists"
    claim = await saga.settle(request())
    assert chain.commits == []
    assert claim.transaction_hash is None
    assert notify.claim_ids == ["claim_abc"]


async def test_missing_collection_is_configuration_error(saga, chain, records):
    with pytest.raises(SagaFailed) as exc:
        await saga.settle(request(collection_id=None))
    assert isinstance(exc.value.__cause__, ConfigurationError)
    assert chain.intent_checks == 0
    assert records.calls == 0


async def test_notification_retried_without_repeating_commit(saga, chain, notify):
    notify.failures = 2
    await saga.settle(request())
    assert len(chain.commits) == 1
    assert notify.claim_ids == ["claim_abc"]


async def test_notification_failure_keeps_commit_checkpoint(saga, chain, notify):
    notify.failures = 3
    with pytest.raises(SagaFailed) as exc:
        await saga.settle(request())
    assert exc.value.step == "notify_external"
    assert await saga.status(DID, "claim_abc", 0) == SagaStatus.COMMITTED

    await saga.settle(request())
    assert len(chain.commits) == 1
    assert notify.claim_ids == ["claim_abc"]


async def test_resumed_thread_keeps_reserved_amount(saga, chain):
    chain.commit_failures = 3
    with pytest.raises(SagaFailed):
        await saga.settle(request(amount=2000))
    claim = await saga.settle(request(amount=2600))
    assert claim.amount == 2000
    assert chain.commits[0]["amount"] == 2000


async def test_split_threads_are_independent(saga, chain):
    await saga.settle(request(claim_id="claim_abc", split_index=0))
    await saga.settle(request(claim_id="claim_abc_1", split_index=1))
    assert [c["claim_id"] for c in chain.commits] == ["claim_abc", "claim_abc_1"]
    assert settlement_thread_id(DID, "claim_abc", 1) == f"{DID}:claim_abc:1"
