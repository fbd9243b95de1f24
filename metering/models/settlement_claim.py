from pydantic import BaseModel


class SettlementClaim(BaseModel):
    cid: str
    transaction_hash: str | None = None
    amount: float
    denom: str
