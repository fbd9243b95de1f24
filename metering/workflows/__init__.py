# Checkpointed sagas (LangGraph)
from metering.workflows.saga import RetryPolicy, SagaRunner, SagaStatus, SagaStep
from metering.workflows.settlement import SettlementRequest, SettlementSaga, settlement_thread_id

__all__ = [
    "RetryPolicy",
    "SagaRunner",
    "SagaStatus",
    "SagaStep",
    "SettlementRequest",
    "SettlementSaga",
    "settlement_thread_id",
]
