from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class SagaCheckpoint(Document):
    """One completed saga step; written once, never updated."""
    thread_id: str
    step: str
    seq: int
    output: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "saga_checkpoints"
        indexes = [
            IndexModel([("thread_id", ASCENDING), ("step", ASCENDING)], unique=True),
            [("thread_id", 1), ("seq", 1)],
        ]
