"""Run ARQ worker. Usage: python -m metering.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from metering.core.config import get_settings
from metering.worker.tasks import get_redis_settings, reconcile_held_amounts, shutdown, startup


def reconcile_minutes(interval: int) -> set[int]:
    """Minutes of the hour on which the reconcile cron fires."""
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


class WorkerSettings:
    redis_settings = get_redis_settings()
    cron_jobs = [
        cron(
            reconcile_held_amounts,
            minute=reconcile_minutes(get_settings().reconcile_interval_minutes),
            second=0,
            unique=True,
            run_at_startup=True,
            timeout=25 * 60,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
