"""
Claim/chain and record-store collaborators.

Message construction and signing live behind a chain gateway service; this module
only speaks its narrow HTTP contract. Tests substitute in-process fakes implementing
the same protocols.
"""

from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from metering.core.exceptions import TransientExternalError
from metering.core.logging import get_logger

log = get_logger(__name__)

ALREADY_COMMITTED_MARKERS = ("already exists", "already committed")


def format_amount(amount: float) -> str:
    """Coin amount string; whole numbers without a trailing .0."""
    return str(int(amount)) if float(amount).is_integer() else repr(float(amount))


class ChainTxResponse(BaseModel):
    code: int
    tx_hash: str | None = None
    raw_log: str = ""

    @property
    def already_committed(self) -> bool:
        raw = self.raw_log.lower()
        return any(marker in raw for marker in ALREADY_COMMITTED_MARKERS)


class ChainClient(Protocol):
    async def check_active_intent(self, collection_id: str, grantee_address: str) -> bool: ...

    async def reserve_escrow(self, amount: float, denom: str, collection_id: str) -> ChainTxResponse: ...

    async def commit_claim(self, claim_id: str, collection_id: str, amount: float, denom: str, cid: str) -> ChainTxResponse: ...


class RecordStore(Protocol):
    async def save_signed_claim(self, claim: dict[str, Any], collection_id: str) -> str: ...


class _GatewayClient:
    def __init__(self, base_url: str, *, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransientExternalError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 400:
            log.error("gateway_error", method=method, path=path, status_code=r.status_code, body=r.text[:500])
            raise TransientExternalError(
                f"{method} {path} returned {r.status_code}",
                details={"status_code": r.status_code},
            )
        return r.json()


class HttpChainClient(_GatewayClient):
    """Chain gateway: intent lookup, escrow reservation and claim submission."""

    def __init__(self, base_url: str, *, signer_address: str, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.signer_address = signer_address

    async def check_active_intent(self, collection_id: str, grantee_address: str) -> bool:
        data = await self._request(
            "GET",
            "/v1/intents/active",
            params={"collection_id": collection_id, "grantee_address": grantee_address},
        )
        return bool(data.get("active"))

    async def reserve_escrow(self, amount: float, denom: str, collection_id: str) -> ChainTxResponse:
        data = await self._request(
            "POST",
            "/v1/intents",
            json={
                "amount": {"amount": format_amount(amount), "denom": denom},
                "collection_id": collection_id,
                "grantee_address": self.signer_address,
            },
        )
        return ChainTxResponse.model_validate(data)

    async def commit_claim(self, claim_id: str, collection_id: str, amount: float, denom: str, cid: str) -> ChainTxResponse:
        data = await self._request(
            "POST",
            "/v1/claims",
            json={
                "claim_id": claim_id,
                "collection_id": collection_id,
                "amount": {"amount": format_amount(amount), "denom": denom},
                "cid": cid,
                "use_intent": True,
                "grantee_address": self.signer_address,
            },
        )
        return ChainTxResponse.model_validate(data)


class HttpRecordStore(_GatewayClient):
    """Signed claim records. PUT keyed by claim id, so a retried save never duplicates."""

    async def save_signed_claim(self, claim: dict[str, Any], collection_id: str) -> str:
        data = await self._request(
            "PUT",
            f"/v1/collections/{collection_id}/claims/{claim['claim_id']}",
            json=claim,
        )
        return str(data["cid"])
