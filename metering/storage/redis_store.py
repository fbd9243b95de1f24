import json
from typing import Any

import redis.asyncio as aioredis

from metering.storage.base import Checkpoint, CheckpointStore

KEY_PREFIX = "metering:saga:"

# Claim the step in a hash and append to the ordered log in one script,
# so the log never holds the same step twice.
_LUA_PUT = r"""
if redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2]) == 1 then
  redis.call('RPUSH', KEYS[2], ARGV[2])
  return 1
end
return 0
"""


class RedisCheckpointStore(CheckpointStore):
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis
        self._put = redis.register_script(_LUA_PUT)

    @staticmethod
    def _steps_key(thread_id: str) -> str:
        return f"{KEY_PREFIX}{thread_id}:steps"

    @staticmethod
    def _log_key(thread_id: str) -> str:
        return f"{KEY_PREFIX}{thread_id}:log"

    async def get(self, thread_id: str) -> Checkpoint | None:
        raw = await self.redis.lindex(self._log_key(thread_id), -1)
        return self._decode(raw) if raw else None

    async def put(self, thread_id: str, step: str, output: dict[str, Any]) -> None:
        payload = json.dumps({"step": step, "output": output})
        await self._put(keys=[self._steps_key(thread_id), self._log_key(thread_id)], args=[step, payload])

    async def history(self, thread_id: str) -> list[Checkpoint]:
        raw = await self.redis.lrange(self._log_key(thread_id), 0, -1)
        return [self._decode(r) for r in raw]

    @staticmethod
    def _decode(raw: str) -> Checkpoint:
        data = json.loads(raw)
        return data["step"], data["output"]
