"""Per-call LLM usage charging: refuse when credits are gone, charge token usage after the call."""

from typing import Any, Mapping

from metering.core.exceptions import BadRequestError, QuotaExceeded
from metering.core.logging import get_logger
from metering.services.ledger import LimitResult, MeteringLedger, tokens_to_credits

log = get_logger(__name__)


class UsageMeter:
    """
    Wraps an LLM call for one user:

        meter = UsageMeter(ledger, user_did, network=settings.network)
        await meter.require_credits()
        response = await llm.ainvoke(...)
        await meter.record_usage(response.usage)

    Only prompt tokens are charged unless include_output_tokens is set.
    """

    def __init__(
        self,
        ledger: MeteringLedger,
        user_did: str,
        *,
        network: str,
        include_output_tokens: bool = False,
        prompt_tokens_field: str = "prompt_tokens",
        total_tokens_field: str = "total_tokens",
    ) -> None:
        self.ledger = ledger
        self.user_did = user_did
        self.network = network
        self.include_output_tokens = include_output_tokens
        self.prompt_tokens_field = prompt_tokens_field
        self.total_tokens_field = total_tokens_field

    def for_user(self, user_did: str) -> "UsageMeter":
        return UsageMeter(
            self.ledger,
            user_did,
            network=self.network,
            include_output_tokens=self.include_output_tokens,
            prompt_tokens_field=self.prompt_tokens_field,
            total_tokens_field=self.total_tokens_field,
        )

    async def require_credits(self) -> float:
        remaining = await self.ledger.get_remaining(self.user_did)
        if remaining <= 0:
            log.info("llm_call_refused", user_did=self.user_did, remaining=remaining)
            raise QuotaExceeded(remaining)
        return remaining

    def token_count(self, usage: Mapping[str, Any] | Any) -> int:
        field = self.total_tokens_field if self.include_output_tokens else self.prompt_tokens_field
        if isinstance(usage, Mapping):
            count = usage.get(field)
        else:
            count = getattr(usage, field, None)
        if count is None:
            log.error("llm_usage_missing_tokens", user_did=self.user_did, field=field)
            raise BadRequestError(f"Token usage has no '{field}'", details={"field": field})
        return int(count)

    async def record_usage(self, usage: Mapping[str, Any] | Any) -> LimitResult:
        tokens = self.token_count(usage)
        credits = tokens_to_credits(tokens, self.network)
        result = await self.ledger.limit(self.user_did, credits)
        log.debug("llm_usage_charged", user_did=self.user_did, tokens=tokens, credits=credits, remaining=result.remaining)
        return result
