from abc import ABC, abstractmethod
from typing import Any

from metering.core.config import get_settings

Checkpoint = tuple[str, dict[str, Any]]


class CheckpointStore(ABC):
    """Append-only saga checkpoints per thread id."""

    @abstractmethod
    async def get(self, thread_id: str) -> Checkpoint | None:
        """Return (last completed step, its output), or None if nothing was checkpointed."""
        ...

    @abstractmethod
    async def put(self, thread_id: str, step: str, output: dict[str, Any]) -> None:
        """Record a completed step. A step already recorded for the thread is left unchanged."""
        ...

    @abstractmethod
    async def history(self, thread_id: str) -> list[Checkpoint]:
        """All completed steps of the thread, oldest first."""
        ...


def get_checkpoint_store(redis=None) -> CheckpointStore:
    settings = get_settings()
    if settings.checkpoint_backend == "mongo":
        from metering.storage.mongo import MongoCheckpointStore
        return MongoCheckpointStore()
    if settings.checkpoint_backend == "memory":
        from metering.storage.memory import MemoryCheckpointStore
        return MemoryCheckpointStore()
    from metering.storage.redis_store import RedisCheckpointStore
    if redis is None:
        from metering.core.redis import create_redis
        redis = create_redis()
    return RedisCheckpointStore(redis)
