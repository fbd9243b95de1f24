from pydantic import BaseModel, Field


class ClaimCollections(BaseModel):
    oracle_claims_collection_id: str | None = None
    subscription_claims_collection_id: str | None = None


class SubscriptionSnapshot(BaseModel):
    """Read-mostly cache of the user's subscription, written by the billing service."""
    admin_address: str = ""
    claim_collections: ClaimCollections = Field(default_factory=ClaimCollections)
    total_credits: float = 0
