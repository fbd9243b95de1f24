from pydantic import BaseModel, Field


class PendingClaim(BaseModel):
    """In-flight claim identity bound to an accumulating held amount."""
    claim_id: str
    amount: float
    timestamp: int  # ms, last update
    batch_start_time: int  # ms, first time this batch was seen
    settled_splits: int = Field(default=0, ge=0)
