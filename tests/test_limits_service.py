"""Global limiter: admission, daily rollover, bypass, fail open."""

from datetime import datetime

import pytest
from pymongo.errors import PyMongoError

from wallet_service.core.exceptions import BadRequestError, LimitExceededError
from wallet_service.models.limit_config import GlobalLimitConfig
from wallet_service.services.limits import DEFAULT_LIMITS, GlobalLimiter, get_limiter

pytestmark = pytest.mark.asyncio


async def test_cap_then_reject_then_next_day(clock):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"mockInterview": 2})

    first = await limiter.check_and_consume("mockInterview")
    second = await limiter.check_and_consume("mockInterview")
    assert (first.current, second.current) == (1, 2)

    with pytest.raises(LimitExceededError) as exc:
        await limiter.check_and_consume("mockInterview")
    assert exc.value.status_code == 429
    assert exc.value.details == {"limit_type": "mockInterview"}

    limits = await limiter.get_limits()
    assert limits["mockInterview"].current == 2  # rejected call was undone

    clock.advance(days=1)
    decision = await limiter.check_and_consume("mockInterview")
    assert decision.admitted
    assert decision.current == 1


async def test_rollover_resets_every_type(clock):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"mockInterview": 5, "quiz": 5})
    await limiter.check_and_consume("quiz")
    await limiter.check_and_consume("quiz")
    await limiter.check_and_consume("mockInterview")

    clock.advance(hours=20)
    await limiter.check_and_consume("mockInterview")

    limits = await limiter.get_limits()
    assert limits["mockInterview"].current == 1
    assert limits["quiz"].current == 0


async def test_rollover_happens_once(clock):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"quiz": 10})
    clock.advance(days=1)
    await limiter.check_and_consume("quiz")
    await limiter.check_and_consume("quiz")
    assert (await limiter.get_limits())["quiz"].current == 2


async def test_day_boundary_uses_configured_timezone(clock):
    # 09:30 UTC is 15:00 in Kolkata; local midnight falls at 18:30 UTC.
    limiter = GlobalLimiter(clock=clock, tz="Asia/Kolkata")
    await limiter.set_limits({"quiz": 10})
    await limiter.check_and_consume("quiz")

    clock.now = datetime(2026, 3, 14, 18, 0)
    await limiter.check_and_consume("quiz")
    assert (await limiter.get_limits())["quiz"].current == 2

    clock.now = datetime(2026, 3, 14, 19, 0)
    assert (await limiter.get_limits())["quiz"].current == 0


async def test_admin_bypass_does_not_count(clock):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"mockInterview": 0})
    decision = await limiter.check_and_consume("mockInterview", is_admin=True)
    assert decision.reason == "admin_bypass"
    assert (await limiter.get_limits())["mockInterview"].current == 0
    with pytest.raises(LimitExceededError):
        await limiter.check_and_consume("mockInterview")


async def test_unconfigured_and_unknown_types_admit(clock):
    limiter = GlobalLimiter(clock=clock)
    decision = await limiter.check_and_consume("mockInterview")
    assert decision.reason == "unconfigured"
    assert await GlobalLimitConfig.find_all().count() == 0

    await limiter.set_limits({"mockInterview": 1})
    decision = await limiter.check_and_consume("voiceNotes")
    assert decision.reason == "unlimited"


async def test_storage_failure_fails_open(clock, monkeypatch):
    limiter = GlobalLimiter(clock=clock)

    async def broken_load():
        raise PyMongoError("connection refused")

    monkeypatch.setattr(limiter, "load", broken_load)
    decision = await limiter.check_and_consume("mockInterview")
    assert decision.admitted
    assert decision.reason == "fail_open"


async def test_get_limits_defaults_without_config(clock):
    limits = await GlobalLimiter(clock=clock).get_limits()
    assert {k: v.max for k, v in limits.items()} == DEFAULT_LIMITS
    assert all(v.current == 0 for v in limits.values())


async def test_set_limits_seeds_defaults_and_preserves_current(clock):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"quiz": 3}, actor_id="admin-1")
    await limiter.check_and_consume("quiz")

    limits = await limiter.set_limits({"quiz": 7, "voiceNotes": 4})
    assert limits["quiz"].max == 7
    assert limits["quiz"].current == 1
    assert limits["voiceNotes"].current == 0
    assert limits["mockInterview"].max == DEFAULT_LIMITS["mockInterview"]


@pytest.mark.parametrize("maxes", [{"quiz": -1}, {"bad.name": 1}, {"$inc": 1}])
async def test_set_limits_rejects_bad_input(clock, maxes):
    with pytest.raises(BadRequestError):
        await GlobalLimiter(clock=clock).set_limits(maxes)


async def test_reset_all(clock):
    limiter = GlobalLimiter(clock=clock)
    assert await limiter.reset_all() == {}
    await limiter.set_limits({"quiz": 3, "mockInterview": 3})
    await limiter.check_and_consume("quiz")
    await limiter.check_and_consume("mockInterview")

    limits = await limiter.reset_all(actor_id="admin-1")
    assert all(v.current == 0 for v in limits.values())
    config = await limiter.load()
    assert config.updated_by == "admin-1"


async def test_get_limiter_is_shared():
    assert get_limiter() is get_limiter()


async def test_midnight_between_rollover_check_and_increment(clock, monkeypatch):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"quiz": 10})
    await limiter.check_and_consume("quiz")
    await limiter.check_and_consume("quiz")

    clock.advance(days=1)
    real_reset = limiter.reset_if_new_day
    calls = []

    # The first caller reads the config just before midnight and skips the reset.
    async def late_reset(config):
        calls.append(config)
        if len(calls) == 1:
            return config
        return await real_reset(config)

    monkeypatch.setattr(limiter, "reset_if_new_day", late_reset)
    decision = await limiter.check_and_consume("quiz")
    assert decision.current == 1
    assert len(calls) == 2

    monkeypatch.undo()
    assert (await limiter.get_limits())["quiz"].current == 1


async def test_rollover_that_never_lands_fails_open(clock, monkeypatch):
    limiter = GlobalLimiter(clock=clock)
    await limiter.set_limits({"quiz": 10})
    await limiter.check_and_consume("quiz")
    clock.advance(days=1)

    async def no_reset(config):
        return config

    monkeypatch.setattr(limiter, "reset_if_new_day", no_reset)
    decision = await limiter.check_and_consume("quiz")
    assert decision.admitted
    assert decision.reason == "fail_open"

    raw = await GlobalLimitConfig.get_motor_collection().find_one({"key": "limits"})
    assert raw["limits"]["quiz"]["current"] == 1
