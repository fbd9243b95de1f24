from typing import Any

from pymongo.errors import DuplicateKeyError

from metering.models.saga_checkpoint import SagaCheckpoint
from metering.storage.base import Checkpoint, CheckpointStore


class MongoCheckpointStore(CheckpointStore):
    """Checkpoints as SagaCheckpoint documents; requires init_db()."""

    async def get(self, thread_id: str) -> Checkpoint | None:
        doc = await SagaCheckpoint.find(SagaCheckpoint.thread_id == thread_id).sort(-SagaCheckpoint.seq).first_or_none()
        return (doc.step, doc.output) if doc else None

    async def put(self, thread_id: str, step: str, output: dict[str, Any]) -> None:
        seq = await SagaCheckpoint.find(SagaCheckpoint.thread_id == thread_id).count()
        try:
            await SagaCheckpoint(thread_id=thread_id, step=step, seq=seq, output=output).insert()
        except DuplicateKeyError:
            # unique (thread_id, step): already recorded
            return

    async def history(self, thread_id: str) -> list[Checkpoint]:
        docs = await SagaCheckpoint.find(SagaCheckpoint.thread_id == thread_id).sort(+SagaCheckpoint.seq).to_list()
        return [(d.step, d.output) for d in docs]
