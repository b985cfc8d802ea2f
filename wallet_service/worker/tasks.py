"""ARQ job definitions."""

import uuid
from typing import Any

from arq.connections import RedisSettings

from wallet_service.core.config import get_settings
from wallet_service.core.logging import get_logger

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, job_id: str | None, kwargs: dict[str, Any], coro) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        from wallet_service.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        await FailedJob(job_name=job_name, job_id=fid, kwargs=kwargs, reason=str(e)[:2000]).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def reset_daily_limits(ctx: dict[str, Any]) -> None:
    """Cron at midnight: same exactly-once rollover the request path triggers lazily."""
    from wallet_service.worker.cron import run_reset_daily_limits
    await _run_with_dlq("reset_daily_limits", _job_id(ctx), {}, run_reset_daily_limits())


async def expire_stale_topup_orders(ctx: dict[str, Any]) -> None:
    """Cron hourly: pending gateway orders past their TTL become failed."""
    from wallet_service.worker.cron import run_expire_stale_topup_orders
    await _run_with_dlq("expire_stale_topup_orders", _job_id(ctx), {}, run_expire_stale_topup_orders())


async def startup(ctx: dict) -> None:
    from wallet_service.core.logging import configure_logging
    from wallet_service.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
