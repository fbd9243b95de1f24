"""
Generic checkpointed saga runner.

A saga is an ordered list of named steps compiled into a linear LangGraph.
Each node skips its step when the thread already has a checkpoint for it,
otherwise runs the step with bounded exponential backoff and checkpoints
the output before the graph moves on. Re-running a thread therefore resumes
after the last completed step and never repeats an earlier side effect.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypedDict

from langgraph.graph import END, START, StateGraph

from metering.core.exceptions import BadRequestError, ConfigurationError, QuotaExceeded, SagaFailed
from metering.core.logging import get_logger
from metering.storage.base import CheckpointStore

log = get_logger(__name__)

NON_RETRYABLE = (ConfigurationError, QuotaExceeded, BadRequestError)


class SagaStatus(str, Enum):
    PENDING_INTENT = "PENDING_INTENT"
    INTENT_SENT = "INTENT_SENT"
    RECORDED = "RECORDED"
    COMMITTED = "COMMITTED"
    NOTIFIED = "NOTIFIED"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_factor: float = 2.0
    initial_interval: float = 1.0
    max_interval: float = 30.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return min(self.initial_interval * self.backoff_factor ** (attempt - 1), self.max_interval)


StepFn = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class SagaStep:
    name: str
    status: SagaStatus  # status reached once this step is checkpointed
    run: StepFn


class SagaGraphState(TypedDict):
    thread_id: str
    context: dict[str, Any]


class SagaRunner:
    def __init__(
        self,
        steps: list[SagaStep],
        store: CheckpointStore,
        retry: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        names = [s.name for s in steps]
        if not steps or len(set(names)) != len(names):
            raise ValueError("Saga steps must be a non-empty list of unique names")
        if "input" in names:
            raise ValueError("'input' is reserved for the saga payload")
        self.steps = steps
        self.store = store
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._graph = self._build_graph()

    def _build_graph(self):
        builder = StateGraph(SagaGraphState)
        for step in self.steps:
            builder.add_node(step.name, self._node(step))
        builder.add_edge(START, self.steps[0].name)
        for prev, nxt in zip(self.steps, self.steps[1:]):
            builder.add_edge(prev.name, nxt.name)
        builder.add_edge(self.steps[-1].name, END)
        return builder.compile()

    def _node(self, step: SagaStep):
        async def node(state: SagaGraphState) -> dict:
            context = state["context"]
            if step.name in context:
                log.debug("saga_step_skipped", thread_id=state["thread_id"], step=step.name)
                return {"context": context}
            output = await self._run_step(step, state["thread_id"], context)
            await self.store.put(state["thread_id"], step.name, output)
            log.info("saga_step_done", thread_id=state["thread_id"], step=step.name, status=step.status.value)
            return {"context": {**context, step.name: output}}

        return node

    async def _run_step(self, step: SagaStep, thread_id: str, context: dict[str, Any]) -> dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await step.run(context)
            except NON_RETRYABLE as e:
                log.error("saga_step_failed", thread_id=thread_id, step=step.name, attempt=attempt, error=str(e), retryable=False)
                raise SagaFailed(thread_id, step.name, str(e)) from e
            except Exception as e:
                if attempt >= self.retry.max_attempts:
                    log.error("saga_step_failed", thread_id=thread_id, step=step.name, attempt=attempt, error=str(e), retryable=True)
                    raise SagaFailed(thread_id, step.name, f"retries exhausted: {e}") from e
                delay = self.retry.delay(attempt)
                log.warning("saga_step_retry", thread_id=thread_id, step=step.name, attempt=attempt, delay=delay, error=str(e))
                await self._sleep(delay)

    async def run(self, thread_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Drive the thread to completion; returns the context (payload under 'input', outputs by step name)."""
        context: dict[str, Any] = {"input": payload}
        for step_name, output in await self.store.history(thread_id):
            context[step_name] = output
        if all(s.name in context for s in self.steps):
            log.debug("saga_already_done", thread_id=thread_id)
            return context
        result = await self._graph.ainvoke({"thread_id": thread_id, "context": context})
        return result["context"]

    async def status(self, thread_id: str) -> SagaStatus:
        done = {name for name, _ in await self.store.history(thread_id)}
        if not done:
            return SagaStatus.PENDING_INTENT
        if all(s.name in done for s in self.steps):
            return SagaStatus.DONE
        reached = SagaStatus.PENDING_INTENT
        for s in self.steps:
            if s.name not in done:
                break
            reached = s.status
        return reached
