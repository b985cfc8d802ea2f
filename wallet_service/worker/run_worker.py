"""ARQ worker. Usage: python -m wallet_service.worker.run_worker (or: arq wallet_service.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron

from wallet_service.worker.tasks import (
    expire_stale_topup_orders,
    get_redis_settings,
    reset_daily_limits,
    shutdown,
    startup,
)


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [reset_daily_limits, expire_stale_topup_orders]
    cron_jobs = [
        cron(reset_daily_limits, hour=0, minute=0, second=5),  # UTC; lazy reset covers other zones
        cron(expire_stale_topup_orders, minute=15, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
