from metering.models.failed_job import FailedJob
from metering.models.pending_claim import PendingClaim
from metering.models.saga_checkpoint import SagaCheckpoint
from metering.models.settlement_claim import SettlementClaim
from metering.models.subscription import ClaimCollections, SubscriptionSnapshot

__all__ = [
    "FailedJob",
    "PendingClaim",
    "SagaCheckpoint",
    "SettlementClaim",
    "ClaimCollections",
    "SubscriptionSnapshot",
]
