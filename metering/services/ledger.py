"""Metering ledger: atomic balance decrement plus held-amount accounting on Redis."""

from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from metering.core.exceptions import BadRequestError, PaymentRequiredError, QuotaExceeded, TransientExternalError
from metering.core.logging import get_logger

log = get_logger(__name__)

KEY_PREFIX = "metering:"
KEY_HELD_AMOUNTS = "metering:held_amounts"

# Numbers are returned as strings: Redis truncates Lua numbers to integers.
_LUA_LIMIT = r"""
local balance_key = KEYS[1]
local held_key = KEYS[2]
local user_did = ARGV[1]
local credits = tonumber(ARGV[2])

local new_balance = tonumber(redis.call('INCRBYFLOAT', balance_key, -credits))
if new_balance < 0 then
  local restored = redis.call('INCRBYFLOAT', balance_key, credits)
  return {0, restored}
end

redis.call('ZINCRBY', held_key, credits, user_did)
return {1, tostring(new_balance)}
"""

# With a second key, the decrement is applied at most once per settlement id.
_LUA_SETTLE_HELD = r"""
local held_key = KEYS[1]
local user_did = ARGV[1]
local amount = tonumber(ARGV[2])
local epsilon = tonumber(ARGV[3])

if KEYS[2] and not redis.call('SET', KEYS[2], '1', 'NX', 'EX', tonumber(ARGV[4])) then
  return {0, redis.call('ZSCORE', held_key, user_did) or '0'}
end
if not redis.call('ZSCORE', held_key, user_did) then
  return {1, '0'}
end
local left = tonumber(redis.call('ZINCRBY', held_key, -amount, user_did))
if left <= epsilon then
  redis.call('ZREM', held_key, user_did)
  return {1, '0'}
end
return {1, tostring(left)}
"""

_LUA_OVERRIDE_BALANCE = r"""
local balance_key = KEYS[1]
local held_key = KEYS[2]
local user_did = ARGV[1]
local confirmed = tonumber(ARGV[2])

local held = tonumber(redis.call('ZSCORE', held_key, user_did) or '0')
local new_balance = confirmed - held
if new_balance < 0 then
  redis.call('SET', balance_key, '0')
  return {0, tostring(new_balance), tostring(held)}
end
redis.call('SET', balance_key, tostring(new_balance))
return {1, tostring(new_balance), tostring(held)}
"""

# Held amounts below this are float noise from repeated INCRBYFLOAT.
SETTLE_EPSILON = 1e-6
SETTLED_MARKER_TTL_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class LimitResult:
    success: bool
    remaining: float


@dataclass(frozen=True)
class SettleResult:
    applied: bool  # False when this settlement id was already deducted
    held_left: float


def balance_key(user_did: str) -> str:
    return f"{KEY_PREFIX}{user_did}:balance"


def settled_marker_key(settlement_id: str) -> str:
    return f"{KEY_PREFIX}settled:{settlement_id}"


def tokens_to_credits(token_count: int, network: str) -> int:
    """LLM token usage priced in credits (1 credit = 1 micro-denom unit).

    Base cost is 0.75 per million tokens. Mainnet carries a 30% markup; test
    networks price per token with a 10x markup so small runs still settle.
    """
    markup = 1.3 if network == "mainnet" else 10
    tokens_per_unit = 1_000_000 if network == "mainnet" else 1
    return round((token_count / tokens_per_unit) * 0.75 * markup)


class MeteringLedger:
    """Balance and held-amount primitives. Takes the shared Redis handle explicitly."""

    def __init__(self, redis: aioredis.Redis, *, disable_credits: bool = False) -> None:
        self.redis = redis
        self.disable_credits = disable_credits
        self._limit = redis.register_script(_LUA_LIMIT)
        self._settle = redis.register_script(_LUA_SETTLE_HELD)
        self._override = redis.register_script(_LUA_OVERRIDE_BALANCE)

    async def limit(self, user_did: str, credits: float) -> LimitResult:
        """
        Deduct credits from the balance and add them to the user's held amount in one step.
        Raises QuotaExceeded (balance untouched) if the balance would go negative.
        """
        if credits < 0:
            raise BadRequestError("Credits must be non-negative", details={"credits": credits})
        try:
            ok, value = await self._limit(
                keys=[balance_key(user_did), KEY_HELD_AMOUNTS],
                args=[user_did, repr(float(credits))],
            )
        except RedisError as e:
            log.exception("ledger_limit_failed", user_did=user_did, credits=credits)
            raise TransientExternalError("Failed to process credit limit") from e
        remaining = float(value)
        if int(ok) == 0:
            raise QuotaExceeded(remaining)
        log.debug("ledger_limited", user_did=user_did, credits=credits, remaining=remaining)
        return LimitResult(success=True, remaining=remaining)

    async def get_balance(self, user_did: str) -> float:
        val = await self.redis.get(balance_key(user_did))
        return float(val) if val is not None else 0.0

    async def get_remaining(self, user_did: str) -> float:
        return await self.get_balance(user_did)

    async def get_held_amount(self, user_did: str) -> float:
        score = await self.redis.zscore(KEY_HELD_AMOUNTS, user_did)
        return float(score) if score is not None else 0.0

    async def increment_held_amount(self, user_did: str, amount: float) -> float:
        return float(await self.redis.zincrby(KEY_HELD_AMOUNTS, amount, user_did))

    async def delete_held_amount(self, user_did: str) -> None:
        await self.redis.zrem(KEY_HELD_AMOUNTS, user_did)

    async def settle_held_amount(self, user_did: str, amount: float) -> float:
        """Subtract a settled amount; drop the entry once nothing is left. Returns what remains held."""
        _, left = await self._settle(
            keys=[KEY_HELD_AMOUNTS],
            args=[user_did, repr(float(amount)), repr(SETTLE_EPSILON)],
        )
        return float(left)

    async def settle_chunk(self, user_did: str, settlement_id: str, amount: float) -> SettleResult:
        """
        settle_held_amount keyed by settlement id (the saga thread id): a chunk replayed
        after a crash finds its marker and leaves the held amount alone.
        """
        applied, left = await self._settle(
            keys=[KEY_HELD_AMOUNTS, settled_marker_key(settlement_id)],
            args=[user_did, repr(float(amount)), repr(SETTLE_EPSILON), SETTLED_MARKER_TTL_SECONDS],
        )
        if not int(applied):
            log.warning("chunk_already_deducted", user_did=user_did, settlement_id=settlement_id)
        return SettleResult(applied=bool(int(applied)), held_left=float(left))

    async def list_users_with_held_amount(self, min_amount: float) -> list[tuple[str, float]]:
        """All users whose held amount is at least min_amount, ascending by amount."""
        raw = await self.redis.zrangebyscore(KEY_HELD_AMOUNTS, min_amount, "+inf", withscores=True)
        return [(member, float(score)) for member, score in raw]

    async def override_balance(self, user_did: str, confirmed_balance: float) -> float:
        """
        Reset the balance to the externally confirmed balance minus the held amount.
        A negative result means held usage exceeds what the user has: balance is clamped
        to 0 and PaymentRequiredError is raised unless credits are disabled.
        """
        if isinstance(confirmed_balance, bool) or not isinstance(confirmed_balance, (int, float)):
            raise BadRequestError("Balance must be a number")
        ok, new_balance, held = await self._override(
            keys=[balance_key(user_did), KEY_HELD_AMOUNTS],
            args=[user_did, repr(float(confirmed_balance))],
        )
        new_balance, held = float(new_balance), float(held)
        if int(ok) == 0:
            log.error(
                "held_exceeds_balance",
                user_did=user_did,
                held_amount=held,
                confirmed_balance=confirmed_balance,
            )
            if self.disable_credits:
                return 0.0
            raise PaymentRequiredError(
                "Pending usage is higher than your current balance. Please add more credits to continue.",
                details={"balance": confirmed_balance, "held": held},
            )
        log.debug(
            "balance_overridden",
            user_did=user_did,
            balance=new_balance,
            held_amount=held,
            confirmed_balance=confirmed_balance,
        )
        return new_balance
