"""Global daily limits: one shared counter per operation type across all accounts.

Counters live on the singleton ``system_config`` document (key "limits"). The
first write on a new calendar day resets every type at once, not only the one
being requested. Consumption is increment-then-check: ``$inc`` first, and if the
new value is over ``max`` the increment is undone and the call rejected. That
keeps concurrent callers from both slipping past the last free slot. Storage
failures fail open.
"""

import re
from datetime import datetime, time, timezone
from functools import lru_cache
from typing import Callable
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from wallet_service.core.config import get_settings
from wallet_service.core.exceptions import BadRequestError, LimitExceededError
from wallet_service.core.logging import get_logger
from wallet_service.models.limit_config import LIMITS_KEY, GlobalLimitConfig, LimitCounter

log = get_logger(__name__)

DEFAULT_LIMITS = {
    "mockInterview": 100,
    "quiz": 500,
    "adaptiveRevision": 200,
}

ROLLOVER_ATTEMPTS = 3

_LIMIT_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")


class LimitDecision(BaseModel):
    admitted: bool
    limit_type: str
    reason: str | None = None  # admin_bypass, unconfigured, unlimited, consumed, fail_open
    current: int | None = None
    max: int | None = None


def utcnow() -> datetime:
    return datetime.utcnow()


def check_limit_name(name: str) -> str:
    if not _LIMIT_NAME.match(name or ""):
        raise BadRequestError(f"Invalid limit type: {name!r}")
    return name


class GlobalLimiter:
    """Admission gate in front of expensive operations.

    ``clock`` returns naive UTC datetimes, the same convention stored documents use.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, tz: str | None = None):
        self.clock = clock
        self.tz = ZoneInfo(tz or get_settings().limits_timezone)

    @property
    def collection(self):
        return GlobalLimitConfig.get_motor_collection()

    def start_of_day(self, now: datetime) -> datetime:
        """Midnight of ``now``'s calendar day in the configured zone, as naive UTC."""
        local = now.replace(tzinfo=timezone.utc).astimezone(self.tz)
        midnight = datetime.combine(local.date(), time.min, tzinfo=self.tz)
        return midnight.astimezone(timezone.utc).replace(tzinfo=None)

    def is_new_day(self, last_updated: datetime, now: datetime) -> bool:
        return last_updated < self.start_of_day(now)

    async def load(self) -> GlobalLimitConfig | None:
        return await GlobalLimitConfig.find_one(GlobalLimitConfig.key == LIMITS_KEY)

    async def reset_if_new_day(self, config: GlobalLimitConfig) -> GlobalLimitConfig:
        """Zero every counter once per day; only the first caller after midnight matches the filter."""
        now = self.clock()
        if not self.is_new_day(config.last_updated, now):
            return config
        reset = {f"limits.{name}.current": 0 for name in config.limits}
        raw = await self.collection.find_one_and_update(
            {"key": LIMITS_KEY, "last_updated": {"$lt": self.start_of_day(now)}},
            {"$set": {**reset, "last_updated": now}},
            return_document=ReturnDocument.AFTER,
        )
        if raw is not None:
            log.info("limits_reset", trigger="daily_rollover", types=sorted(config.limits))
            return GlobalLimitConfig.model_validate(raw)
        return await self.load() or config

    async def check_and_consume(self, limit_type: str, is_admin: bool = False) -> LimitDecision:
        """Admit and count one operation, or raise LimitExceededError."""
        if is_admin:
            return LimitDecision(admitted=True, limit_type=limit_type, reason="admin_bypass")
        try:
            return await self._consume(limit_type)
        except LimitExceededError:
            raise
        except PyMongoError as e:
            log.warning("limit_check_failed_open", limit_type=limit_type, error=str(e))
            return LimitDecision(admitted=True, limit_type=limit_type, reason="fail_open")

    async def _consume(self, limit_type: str) -> LimitDecision:
        path = f"limits.{limit_type}.current"
        for _ in range(ROLLOVER_ATTEMPTS):
            config = await self.load()
            if config is None:
                return LimitDecision(admitted=True, limit_type=limit_type, reason="unconfigured")
            config = await self.reset_if_new_day(config)
            if limit_type not in config.limits:
                return LimitDecision(admitted=True, limit_type=limit_type, reason="unlimited")

            # Only count against today's counters: if midnight passed since the
            # rollover check, the filter misses and the reset runs first.
            now = self.clock()
            raw = await self.collection.find_one_and_update(
                {"key": LIMITS_KEY, "last_updated": {"$gte": self.start_of_day(now)}},
                {"$inc": {path: 1}, "$set": {"last_updated": now}},
                return_document=ReturnDocument.AFTER,
            )
            if raw is not None:
                break
            log.debug("limit_rollover_retry", limit_type=limit_type)
        else:
            log.warning("limit_check_failed_open", limit_type=limit_type, error="rollover_contention")
            return LimitDecision(admitted=True, limit_type=limit_type, reason="fail_open")

        counter = LimitCounter.model_validate(raw["limits"][limit_type])
        if counter.current > counter.max:
            await self.collection.update_one({"key": LIMITS_KEY, path: {"$gt": 0}}, {"$inc": {path: -1}})
            log.info("limit_exceeded", limit_type=limit_type, max=counter.max)
            raise LimitExceededError(limit_type)
        log.debug("limit_consumed", limit_type=limit_type, current=counter.current, max=counter.max)
        return LimitDecision(
            admitted=True,
            limit_type=limit_type,
            reason="consumed",
            current=counter.current,
            max=counter.max,
        )

    async def get_limits(self) -> dict[str, LimitCounter]:
        """Current counters; defaults when nothing has been configured yet."""
        config = await self.load()
        if config is None:
            return {name: LimitCounter(max=m) for name, m in DEFAULT_LIMITS.items()}
        config = await self.reset_if_new_day(config)
        return config.limits

    async def set_limits(self, maxes: dict[str, int], actor_id: str | None = None) -> dict[str, LimitCounter]:
        """Upsert caps. Today's ``current`` counts are preserved; unknown types start at zero."""
        for name, value in maxes.items():
            check_limit_name(name)
            if value < 0:
                raise BadRequestError(f"Limit for {name} must be >= 0")
        config = await self.load()
        if config is not None:
            config = await self.reset_if_new_day(config)
        now = self.clock()
        update: dict[str, object] = {"last_updated": now, "updated_by": actor_id}
        for name, value in maxes.items():
            update[f"limits.{name}.max"] = int(value)
            if config is None or name not in config.limits:
                update[f"limits.{name}.current"] = 0
        if config is None:
            for name, default in DEFAULT_LIMITS.items():
                if name not in maxes:
                    update[f"limits.{name}.max"] = default
                    update[f"limits.{name}.current"] = 0
        raw = await self.collection.find_one_and_update(
            {"key": LIMITS_KEY},
            {"$set": update},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        log.info("limits_updated", actor_id=actor_id, limits=maxes)
        return GlobalLimitConfig.model_validate(raw).limits

    async def reset_all(self, actor_id: str | None = None, trigger: str = "manual") -> dict[str, LimitCounter]:
        config = await self.load()
        if config is None:
            return {}
        reset = {f"limits.{name}.current": 0 for name in config.limits}
        raw = await self.collection.find_one_and_update(
            {"key": LIMITS_KEY},
            {"$set": {**reset, "last_updated": self.clock(), "updated_by": actor_id}},
            return_document=ReturnDocument.AFTER,
        )
        log.info("limits_reset", trigger=trigger, actor_id=actor_id, types=sorted(config.limits))
        return GlobalLimitConfig.model_validate(raw).limits


@lru_cache
def get_limiter() -> GlobalLimiter:
    return GlobalLimiter()
