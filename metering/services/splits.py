"""Split a held amount into chunks no larger than the per-claim maximum."""

from metering.core.exceptions import BadRequestError
from metering.services.ledger import SETTLE_EPSILON


def calculate_splits(held_amount: float, max_amount: float) -> list[float]:
    """
    [held_amount] if it fits in one claim, otherwise full max_amount chunks followed
    by the remainder. Chunks are settled strictly in this order.

    A remainder at or below SETTLE_EPSILON is INCRBYFLOAT noise and is not emitted;
    settling the chunks clears it from the held amount.

    >>> calculate_splits(12000, 5000)
    [5000, 5000, 2000]
    """
    if max_amount <= 0:
        raise BadRequestError("Max claim amount must be positive", details={"max_amount": max_amount})
    if held_amount < 0:
        raise BadRequestError("Held amount must be non-negative", details={"held_amount": held_amount})
    if held_amount <= max_amount:
        return [held_amount]

    chunks: list[float] = []
    remainder = held_amount
    while remainder > max_amount:
        chunks.append(max_amount)
        remainder -= max_amount
    if remainder > SETTLE_EPSILON:
        chunks.append(remainder)
    return chunks
