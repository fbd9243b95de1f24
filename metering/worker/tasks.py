"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from metering.core.config import get_settings
from metering.core.logging import configure_logging, get_logger
from metering.core.redis import create_redis

log = get_logger(__name__)


async def record_failed_job(job_name: str, job_id: str | None, error: Exception) -> None:
    from metering.db.init import init_db
    from metering.models.failed_job import FailedJob
    await init_db()
    await FailedJob(
        job_name=job_name,
        job_id=job_id or "",
        error_type=type(error).__name__,
        reason=str(error)[:2000],
        context=getattr(error, "details", {}) or {},
    ).insert()


async def _run_with_dlq(job_name: str, job_id: str | None, coro) -> Any:
    """Run coroutine; on exception persist to FailedJob (when Mongo is configured) then re-raise."""
    try:
        return await coro
    except Exception as e:
        log.exception("job_failed", job=job_name, job_id=job_id, reason=str(e))
        if get_settings().mongo_configured:
            await record_failed_job(job_name, job_id, e)
        raise


async def reconcile_held_amounts(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron job: settle held amounts (see metering.services.reconciler)."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from metering.worker.cron import run_reconcile_held_amounts
    report = await _run_with_dlq(
        "reconcile_held_amounts",
        job_id,
        run_reconcile_held_amounts(ctx["reconciler"], ctx["ledger_redis"]),
    )
    return vars(report)


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    if settings.mongo_configured or settings.checkpoint_backend == "mongo":
        from metering.db.init import init_db
        await init_db()
    from metering.worker.cron import build_reconciler
    ctx["ledger_redis"] = create_redis(settings.redis_url)
    ctx["reconciler"] = build_reconciler(ctx["ledger_redis"], settings)
    log.info("worker_started", network=settings.network, denom=settings.denom)


async def shutdown(ctx: dict) -> None:
    redis = ctx.get("ledger_redis")
    if redis is not None:
        await redis.aclose()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/") or 0) if u.path else 0,
    )
