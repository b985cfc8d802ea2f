"""Coupon validation, discount maths and redemption."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError, field_serializer
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from wallet_service.core.exceptions import BadRequestError, ConflictError, InvalidCouponError, NotFoundError
from wallet_service.core.logging import get_logger
from wallet_service.models.coupon import Coupon, CouponUsage, DiscountType, normalize_code
from wallet_service.services.ledger import storage_errors

log = get_logger(__name__)

CENT = Decimal("0.01")


class CouponReason(str, Enum):
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    BELOW_MIN_PURCHASE = "below_min_purchase"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"


class CouponQuote(BaseModel):
    code: str
    valid: bool
    reason: CouponReason | None = None
    discount: Decimal = Decimal("0")
    final_amount: Decimal
    discount_type: DiscountType
    discount_value: float

    @field_serializer("discount", "final_amount")
    def _as_number(self, v: Decimal) -> float:
        return float(v)


def _dec(value: float | int) -> Decimal:
    return Decimal(str(value))


def validate(
    coupon: Coupon,
    account_id: str,
    amount: float | int | None,
    now: datetime | None = None,
) -> CouponReason | None:
    """Return the first reason the coupon cannot be used, or None when it is valid.

    ``amount=None`` skips the minimum purchase check (redemption re-checks).
    """
    now = now or datetime.utcnow()
    if not coupon.is_active:
        return CouponReason.INACTIVE
    if now < coupon.valid_from or now > coupon.valid_to:
        return CouponReason.EXPIRED
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return CouponReason.USAGE_LIMIT_REACHED
    if amount is not None and _dec(amount) < _dec(coupon.min_purchase):
        return CouponReason.BELOW_MIN_PURCHASE
    if coupon.uses_by(account_id) >= coupon.per_user_limit:
        return CouponReason.PER_USER_LIMIT_REACHED
    return None


def calculate_discount(coupon: Coupon, amount: float | int) -> Decimal:
    """Discount for ``amount``, always within [0, amount]."""
    amount_d = max(_dec(amount), Decimal("0"))
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = amount_d * _dec(coupon.discount_value) / 100
        if coupon.max_discount is not None and discount > _dec(coupon.max_discount):
            discount = _dec(coupon.max_discount)
    else:
        discount = _dec(coupon.discount_value)
    discount = min(max(discount, Decimal("0")), amount_d)
    return discount.quantize(CENT, rounding=ROUND_HALF_UP)


def build_quote(coupon: Coupon, account_id: str, amount: float | int, now: datetime | None = None) -> CouponQuote:
    reason = validate(coupon, account_id, amount, now=now)
    discount = calculate_discount(coupon, amount) if reason is None else Decimal("0")
    return CouponQuote(
        code=coupon.code,
        valid=reason is None,
        reason=reason,
        discount=discount,
        final_amount=(_dec(amount) - discount).quantize(CENT),
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
    )


@storage_errors
async def get_by_code(code: str) -> Coupon:
    coupon = await Coupon.find_one(Coupon.code == normalize_code(code))
    if not coupon:
        raise NotFoundError("Invalid coupon code")
    return coupon


async def quote(code: str, account_id: str, amount: float | int, now: datetime | None = None) -> CouponQuote:
    """Check a code against an account and purchase amount without mutating anything."""
    coupon = await get_by_code(code)
    return build_quote(coupon, account_id, amount, now=now)


@storage_errors
async def redeem(
    coupon: Coupon,
    account_id: str,
    order_id: str | None = None,
    now: datetime | None = None,
    check_window: bool = True,
) -> CouponUsage:
    """Commit one usage and return its record.

    A single conditional update enforces the usage and per-user limits (and
    ``is_active`` unless ``check_window`` is off, as for payments already
    captured against a quote). No match means no state change.
    """
    now = now or datetime.utcnow()
    reason = validate(coupon, account_id, None, now=now)
    if reason in (CouponReason.INACTIVE, CouponReason.EXPIRED) and not check_window:
        reason = _usage_reason(coupon, account_id)
    if reason is not None:
        raise InvalidCouponError(reason.value, details={"code": coupon.code})

    count_path = f"usage_counts.{account_id}"
    query: dict[str, Any] = {
        "_id": coupon.id,
        "$or": [
            {count_path: {"$exists": False}},
            {count_path: {"$lt": coupon.per_user_limit}},
        ],
    }
    if check_window:
        query["is_active"] = True
    if coupon.usage_limit is not None:
        query["used_count"] = {"$lt": coupon.usage_limit}
    usage = CouponUsage(account_id=account_id, used_at=now, order_id=order_id)
    result = await Coupon.get_motor_collection().update_one(
        query,
        {
            "$inc": {"used_count": 1, count_path: 1},
            "$push": {"used_by": usage.model_dump()},
        },
    )
    if result.modified_count != 1:
        fresh = await Coupon.get(coupon.id)
        if fresh is None:
            raise NotFoundError("Invalid coupon code")
        reason = (
            validate(fresh, account_id, None, now=now) if check_window else _usage_reason(fresh, account_id)
        ) or CouponReason.USAGE_LIMIT_REACHED
        log.info("coupon_redeem_rejected", code=coupon.code, account_id=account_id, reason=reason.value)
        raise InvalidCouponError(reason.value, details={"code": coupon.code})
    log.info(
        "coupon_redeemed",
        code=coupon.code,
        account_id=account_id,
        order_id=order_id,
        redemption_id=usage.redemption_id,
    )
    return usage


def _usage_reason(coupon: Coupon, account_id: str) -> CouponReason | None:
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return CouponReason.USAGE_LIMIT_REACHED
    if coupon.uses_by(account_id) >= coupon.per_user_limit:
        return CouponReason.PER_USER_LIMIT_REACHED
    return None


@storage_errors
async def release(coupon: Coupon, usage: CouponUsage) -> None:
    """Undo a redemption whose accompanying ledger credit did not land."""
    result = await Coupon.get_motor_collection().update_one(
        {"_id": coupon.id, "used_by.redemption_id": usage.redemption_id},
        {
            "$inc": {"used_count": -1, f"usage_counts.{usage.account_id}": -1},
            "$pull": {"used_by": {"redemption_id": usage.redemption_id}},
        },
    )
    log.warning(
        "coupon_redemption_released",
        code=coupon.code,
        account_id=usage.account_id,
        order_id=usage.order_id,
        released=result.modified_count == 1,
    )


# Admin

@storage_errors
async def create_coupon(data: dict[str, Any], created_by: str | None = None) -> Coupon:
    try:
        coupon = Coupon(**data, created_by=created_by)
    except ValidationError as e:
        raise BadRequestError("Invalid coupon definition", details={"errors": e.errors(include_url=False, include_context=False)}) from None
    if await Coupon.find_one(Coupon.code == coupon.code):
        raise ConflictError("Coupon code already exists", details={"code": coupon.code})
    try:
        await coupon.insert()
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists", details={"code": coupon.code}) from None
    log.info("coupon_created", code=coupon.code, created_by=created_by)
    return coupon


@storage_errors
async def list_coupons() -> list[Coupon]:
    return await Coupon.find_all().sort(-Coupon.created_at).to_list()


@storage_errors
async def set_active(code: str, active: bool) -> Coupon:
    """Flip ``is_active`` alone; usage counters written by concurrent redemptions are left as they are."""
    coupon = await get_by_code(code)
    raw = await Coupon.get_motor_collection().find_one_and_update(
        {"_id": coupon.id},
        {"$set": {"is_active": active}},
        return_document=ReturnDocument.AFTER,
    )
    if raw is None:
        raise NotFoundError("Invalid coupon code")
    log.info("coupon_active_changed", code=coupon.code, is_active=active)
    return Coupon.model_validate(raw)


@storage_errors
async def delete_coupon(code: str) -> None:
    coupon = await get_by_code(code)
    await coupon.delete()
    log.info("coupon_deleted", code=coupon.code)
