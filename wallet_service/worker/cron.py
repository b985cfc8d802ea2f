"""Cron bodies: daily limit rollover and stale top-up order expiry."""

from datetime import datetime

from wallet_service.core.logging import get_logger
from wallet_service.services.limits import get_limiter
from wallet_service.services.topups import expire_stale_orders

log = get_logger(__name__)


async def run_reset_daily_limits() -> bool:
    """Return True if this run performed the rollover (False when already done today or unconfigured)."""
    limiter = get_limiter()
    config = await limiter.load()
    if config is None:
        return False
    if not limiter.is_new_day(config.last_updated, limiter.clock()):
        log.info("cron_reset_daily_limits", performed=False)
        return False
    await limiter.reset_if_new_day(config)
    log.info("cron_reset_daily_limits", performed=True)
    return True


async def run_expire_stale_topup_orders(now: datetime | None = None) -> int:
    count = await expire_stale_orders(now)
    log.info("cron_expire_stale_topup_orders", expired=count)
    return count
