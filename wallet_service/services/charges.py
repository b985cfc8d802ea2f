"""Wallet-paid operations: AI mock interview sessions and premium feature unlocks."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId

from wallet_service.core.config import get_settings
from wallet_service.core.exceptions import BadRequestError, ConflictError, NotFoundError
from wallet_service.core.logging import get_logger
from wallet_service.models.user import User
from wallet_service.models.wallet import TransactionType
from wallet_service.services import ledger
from wallet_service.services.ledger import storage_errors

log = get_logger(__name__)


async def charge_interview(user: User, interview_type: str | None = None) -> dict:
    """Debit one interview session. The route is gated by the mockInterview global limit."""
    cost = get_settings().interview_cost
    kind = (interview_type or "General").strip() or "General"
    result = await ledger.debit(
        str(user.id),
        cost,
        TransactionType.INTERVIEW_CHARGE,
        description=f"AI mock interview ({kind})",
        metadata={"interview_type": kind},
    )
    return {"charged": cost, "new_balance": result.new_balance, "transaction_id": result.transaction_id}


@storage_errors
async def _extend_unlock(user_id: PydanticObjectId, feature: str, now: datetime, days: int) -> datetime:
    """Push one feature's expiry out by ``days`` without touching the rest of the user.

    The update is conditional on the expiry just read, so concurrent unlocks of
    the same feature each add their full window.
    """
    collection = User.get_motor_collection()
    path = f"unlocked_features.{feature}"
    for _ in range(max(1, get_settings().ledger_max_attempts)):
        doc = await collection.find_one({"_id": user_id}, {path: 1})
        if doc is None:
            raise NotFoundError("User not found")
        current = (doc.get("unlocked_features") or {}).get(feature)
        start = current if current and current > now else now
        expires_at = start + timedelta(days=days)
        result = await collection.update_one(
            {"_id": user_id, path: current},
            {"$set": {path: expires_at, "updated_at": now}},
        )
        if result.modified_count == 1:
            return expires_at
    raise ConflictError("Feature unlock is busy, please retry", details={"feature": feature})


async def unlock_feature(user: User, feature: str, now: datetime | None = None) -> dict:
    """Debit the feature price and extend the unlock window; the debit is refunded if the unlock cannot be written."""
    settings = get_settings()
    cost = settings.feature_unlock_costs.get(feature)
    if not cost:
        raise BadRequestError("Invalid feature specified", details={"features": sorted(settings.feature_unlock_costs)})
    now = now or datetime.utcnow()
    account_id = str(user.id)
    result = await ledger.debit(
        account_id,
        cost,
        TransactionType.CALL_CHARGE,
        description=f"Unlocked {feature}",
        metadata={"feature": feature},
    )
    try:
        expires_at = await _extend_unlock(user.id, feature, now, settings.feature_unlock_days)
    except Exception:
        log.error("feature_unlock_failed", account_id=account_id, feature=feature, transaction_id=result.transaction_id)
        await ledger.refund(account_id, cost, f"{feature} unlock failed", transaction_id=result.transaction_id)
        raise
    user.unlocked_features[feature] = expires_at
    log.info("feature_unlocked", account_id=account_id, feature=feature, expires_at=expires_at.isoformat())
    return {
        "feature": feature,
        "expires_at": expires_at,
        "charged": cost,
        "new_balance": result.new_balance,
        "transaction_id": result.transaction_id,
    }
