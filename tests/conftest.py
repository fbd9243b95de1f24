import os
from typing import Any, AsyncGenerator

import fakeredis
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")
os.environ.setdefault("NETWORK", "devnet")
os.environ.setdefault("CHECKPOINT_BACKEND", "memory")


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    r = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield r
    await r.aclose()


@pytest_asyncio.fixture
async def client(redis) -> AsyncGenerator[AsyncClient, None]:
    from metering.main import app
    app.state.redis = redis
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.redis = None


class FakeChain:
    """In-process chain gateway with call counters and scripted failures."""

    def __init__(self) -> None:
        self.active_intent = False
        self.intent_checks = 0
        self.reservations: list[tuple[float, str, str]] = []
        self.commits: list[dict[str, Any]] = []
        self.reserve_failures = 0
        self.commit_failures = 0
        self.commit_raw_log = ""
        self.commit_code_on_failure = 1

    async def check_active_intent(self, collection_id: str, grantee_address: str) -> bool:
        self.intent_checks += 1
        return self.active_intent

    async def reserve_escrow(self, amount: float, denom: str, collection_id: str):
        from metering.services.chain import ChainTxResponse
        if self.reserve_failures:
            self.reserve_failures -= 1
            return ChainTxResponse(code=5, raw_log="out of gas")
        self.reservations.append((amount, denom, collection_id))
        return ChainTxResponse(code=0, tx_hash=f"intent-tx-{len(self.reservations)}")

    async def commit_claim(self, claim_id: str, collection_id: str, amount: float, denom: str, cid: str):
        from metering.services.chain import ChainTxResponse
        if self.commit_failures:
            self.commit_failures -= 1
            return ChainTxResponse(code=self.commit_code_on_failure, raw_log=self.commit_raw_log or "account sequence mismatch")
        self.commits.append({"claim_id": claim_id, "collection_id": collection_id, "amount": amount, "denom": denom, "cid": cid})
        return ChainTxResponse(code=0, tx_hash=f"claim-tx-{len(self.commits)}")


class FakeRecords:
    def __init__(self) -> None:
        self.saved: dict[str, dict[str, Any]] = {}
        self.calls = 0
        self.failures = 0

    async def save_signed_claim(self, claim: dict[str, Any], collection_id: str) -> str:
        from metering.core.exceptions import TransientExternalError
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise TransientExternalError("record store timeout")
        self.saved[claim["claim_id"]] = claim
        return f"cid-{claim['claim_id']}"


class NotifyRecorder:
    """httpx MockTransport handler for the subscription webhook."""

    def __init__(self) -> None:
        self.claim_ids: list[str] = []
        self.failures = 0
        self.approved = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        import json
        if self.failures:
            self.failures -= 1
            return httpx.Response(502, text="bad gateway")
        self.claim_ids.append(json.loads(request.content)["claimId"])
        return httpx.Response(200, json={"approved": self.approved})


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def records() -> FakeRecords:
    return FakeRecords()


@pytest.fixture
def notify() -> NotifyRecorder:
    return NotifyRecorder()


@pytest.fixture
def checkpoints():
    from metering.storage.memory import MemoryCheckpointStore
    return MemoryCheckpointStore()


@pytest.fixture
def saga(chain, records, notify, checkpoints):
    from metering.services.notifications import SubscriptionNotifier
    from metering.workflows.saga import RetryPolicy
    from metering.workflows.settlement import SettlementSaga
    notifier = SubscriptionNotifier("http://subs.test", transport=httpx.MockTransport(notify))
    return SettlementSaga(
        chain,
        records,
        notifier,
        checkpoints,
        RetryPolicy(max_attempts=3, backoff_factor=2.0, initial_interval=1.0),
        sleep=_no_sleep,
    )
