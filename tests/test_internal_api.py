import os

import pytest

pytestmark = pytest.mark.asyncio

DID = "did:ixo:alice"
HEADERS = {"X-Internal-Token": os.environ["INTERNAL_API_TOKEN"]}


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"]


async def test_internal_routes_require_token(client):
    r = await client.get(f"/v1/internal/users/{DID}/ledger")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"
    r = await client.get(f"/v1/internal/users/{DID}/ledger", headers={"X-Internal-Token": "wrong"})
    assert r.status_code == 401


async def test_subscription_and_balance_sync(client, redis):
    from metering.services.ledger import MeteringLedger
    from metering.services.subscriptions import get_subscription

    r = await client.put(
        f"/v1/internal/users/{DID}/subscription",
        json={"admin_address": "ixo1admin", "claim_collections": {"oracle_claims_collection_id": "42"}, "total_credits": 20000},
        headers=HEADERS,
    )
    assert r.status_code == 200
    snapshot = await get_subscription(redis, DID)
    assert snapshot.claim_collections.oracle_claims_collection_id == "42"

    await MeteringLedger(redis).increment_held_amount(DID, 1500)
    r = await client.put(f"/v1/internal/users/{DID}/balance", json={"balance": 20000}, headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["balance"] == pytest.approx(18500)

    r = await client.get(f"/v1/internal/users/{DID}/ledger", headers=HEADERS)
    body = r.json()
    assert body["balance"] == pytest.approx(18500)
    assert body["held_amount"] == pytest.approx(1500)
    assert body["pending_claim"] is None


async def test_balance_below_held_is_payment_required(client, redis):
    from metering.services.ledger import MeteringLedger

    await MeteringLedger(redis).increment_held_amount(DID, 1500)
    r = await client.put(f"/v1/internal/users/{DID}/balance", json={"balance": 1000}, headers=HEADERS)
    assert r.status_code == 402
    assert r.json()["error"]["code"] == "PAYMENT_REQUIRED"
    assert r.json()["error"]["details"]["held"] == pytest.approx(1500)
    assert await MeteringLedger(redis).get_balance(DID) == 0


async def test_balance_must_be_numeric(client):
    r = await client.put(f"/v1/internal/users/{DID}/balance", json={"balance": "lots"}, headers=HEADERS)
    assert r.status_code == 422


async def test_usage_check_and_charge(client, redis):
    r = await client.post(f"/v1/internal/users/{DID}/usage/check", headers=HEADERS)
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "QUOTA_EXCEEDED"

    await client.put(f"/v1/internal/users/{DID}/balance", json={"balance": 1000}, headers=HEADERS)
    r = await client.post(f"/v1/internal/users/{DID}/usage/check", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["remaining"] == pytest.approx(1000)

    r = await client.post(f"/v1/internal/users/{DID}/usage", json={"prompt_tokens": 100, "total_tokens": 180}, headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["remaining"] == pytest.approx(250)

    r = await client.get(f"/v1/internal/users/{DID}/ledger", headers=HEADERS)
    assert r.json()["held_amount"] == pytest.approx(750)
