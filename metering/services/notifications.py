"""Notify the subscription service that a claim was committed."""

import httpx
from pydantic import BaseModel

from metering.core.exceptions import TransientExternalError
from metering.core.logging import get_logger

log = get_logger(__name__)

WEBHOOK_PATH = "/api/v1/webhook/claim-submitted"


class ClaimSubmittedResponse(BaseModel):
    approved: bool
    reason: str | None = None


class SubscriptionNotifier:
    def __init__(self, base_url: str, *, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def claim_submitted(self, claim_id: str) -> ClaimSubmittedResponse:
        url = f"{self.base_url}{WEBHOOK_PATH}"
        log.info("notify_claim_submitted", url=url, claim_id=claim_id)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(url, json={"claimId": claim_id})
        except httpx.HTTPError as e:
            raise TransientExternalError(f"Subscription API unreachable: {e}") from e
        if r.status_code >= 400:
            log.error("subscription_api_error", status_code=r.status_code, body=r.text[:500], claim_id=claim_id)
            raise TransientExternalError(
                f"Subscription API error: {r.status_code}",
                details={"status_code": r.status_code, "claim_id": claim_id},
            )
        return ClaimSubmittedResponse.model_validate(r.json())
