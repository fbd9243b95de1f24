from typing import Any

from metering.storage.base import Checkpoint, CheckpointStore


class MemoryCheckpointStore(CheckpointStore):
    """Process-local checkpoints for tests and single-process dev runs."""

    def __init__(self) -> None:
        self._threads: dict[str, list[Checkpoint]] = {}

    async def get(self, thread_id: str) -> Checkpoint | None:
        entries = self._threads.get(thread_id)
        return entries[-1] if entries else None

    async def put(self, thread_id: str, step: str, output: dict[str, Any]) -> None:
        entries = self._threads.setdefault(thread_id, [])
        if any(s == step for s, _ in entries):
            return
        entries.append((step, dict(output)))

    async def history(self, thread_id: str) -> list[Checkpoint]:
        return list(self._threads.get(thread_id, []))
