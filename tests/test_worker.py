import pytest

from metering.services.reconciler import TickReport
from metering.worker.cron import RECONCILE_LOCK_KEY, run_reconcile_held_amounts
from metering.worker.run_worker import reconcile_minutes

pytestmark = pytest.mark.asyncio


class CountingReconciler:
    def __init__(self) -> None:
        self.ticks = 0

    async def run_tick(self) -> TickReport:
        self.ticks += 1
        return TickReport(processed=1, settled=1)


async def test_tick_runs_under_lock(redis):
    reconciler = CountingReconciler()
    report = await run_reconcile_held_amounts(reconciler, redis)
    assert report.settled == 1
    assert reconciler.ticks == 1
    assert await redis.get(RECONCILE_LOCK_KEY) is None


async def test_tick_skipped_while_another_worker_holds_lock(redis):
    reconciler = CountingReconciler()
    await redis.set(RECONCILE_LOCK_KEY, "other-worker", ex=60)
    report = await run_reconcile_held_amounts(reconciler, redis)
    assert report.overlapped is True
    assert reconciler.ticks == 0


async def test_reconcile_minutes():
    assert reconcile_minutes(5) == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}
    assert reconcile_minutes(1) == set(range(60))
    assert reconcile_minutes(0) == set(range(60))


async def test_failed_job_recorded_when_mongo_configured(monkeypatch):
    from metering.core.config import get_settings
    from metering.worker import tasks

    recorded = []

    async def fake_record(job_name, job_id, error):
        recorded.append((job_name, job_id, type(error).__name__))

    async def boom():
        raise RuntimeError("tick crashed")

    monkeypatch.setattr(tasks, "record_failed_job", fake_record)
    monkeypatch.setenv("CHECKPOINT_BACKEND", "memory")
    get_settings.cache_clear()
    try:
        monkeypatch.setenv("MONGODB_URI", "mongodb://mongo.test:27017")
        get_settings.cache_clear()
        with pytest.raises(RuntimeError):
            await tasks._run_with_dlq("reconcile_held_amounts", "job-1", boom())
        assert recorded == [("reconcile_held_amounts", "job-1", "RuntimeError")]

        monkeypatch.delenv("MONGODB_URI")
        get_settings.cache_clear()
        with pytest.raises(RuntimeError):
            await tasks._run_with_dlq("reconcile_held_amounts", "job-2", boom())
        assert len(recorded) == 1
    finally:
        get_settings.cache_clear()
