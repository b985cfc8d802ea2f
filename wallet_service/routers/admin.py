from datetime import datetime

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from wallet_service.core.audit import log_event
from wallet_service.core.exceptions import NotFoundError
from wallet_service.deps import require_admin
from wallet_service.models.coupon import DiscountType, normalize_code
from wallet_service.models.user import User
from wallet_service.services import adjustments
from wallet_service.services import coupons as coupons_service
from wallet_service.services import ledger
from wallet_service.services.limits import get_limiter

router = APIRouter()


class CreateCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    min_purchase: float = Field(default=0, ge=0)
    max_discount: float | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=0)
    per_user_limit: int = Field(default=1, ge=1)
    valid_from: datetime | None = None
    valid_to: datetime


class LimitsRequest(BaseModel):
    limits: dict[str, int]  # limit type -> daily max


class CreditRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str | None = None


class RefundRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str | None = None
    transaction_id: str | None = None


# Coupons

@router.get("/coupons")
async def admin_list_coupons(admin: User = Depends(require_admin)):
    """All coupons, newest first."""
    return {"coupons": await coupons_service.list_coupons()}


@router.post("/coupons", status_code=201)
async def admin_create_coupon(body: CreateCouponRequest, admin: User = Depends(require_admin)):
    data = body.model_dump(exclude_none=True)
    coupon = await coupons_service.create_coupon(data, created_by=str(admin.id))
    await log_event(str(admin.id), "coupon_created", "coupon", coupon.code, {"discount_type": coupon.discount_type.value})
    return {"coupon": coupon}


@router.post("/coupons/{code}/activate")
async def admin_activate_coupon(code: str, admin: User = Depends(require_admin)):
    coupon = await coupons_service.set_active(code, True)
    await log_event(str(admin.id), "coupon_activated", "coupon", coupon.code)
    return {"coupon": coupon}


@router.post("/coupons/{code}/deactivate")
async def admin_deactivate_coupon(code: str, admin: User = Depends(require_admin)):
    coupon = await coupons_service.set_active(code, False)
    await log_event(str(admin.id), "coupon_deactivated", "coupon", coupon.code)
    return {"coupon": coupon}


@router.delete("/coupons/{code}")
async def admin_delete_coupon(code: str, admin: User = Depends(require_admin)):
    await coupons_service.delete_coupon(code)
    await log_event(str(admin.id), "coupon_deleted", "coupon", normalize_code(code))
    return {"status": "deleted"}


# Global limits

@router.get("/limits")
async def admin_get_limits(admin: User = Depends(require_admin)):
    return {"limits": await get_limiter().get_limits()}


@router.post("/limits")
async def admin_set_limits(body: LimitsRequest, admin: User = Depends(require_admin)):
    """Set daily caps; today's counts are kept."""
    limits = await get_limiter().set_limits(body.limits, actor_id=str(admin.id))
    await log_event(str(admin.id), "limits_updated", "system_config", "limits", {"limits": body.limits})
    return {"limits": limits}


@router.post("/limits/reset")
async def admin_reset_limits(admin: User = Depends(require_admin)):
    limits = await get_limiter().reset_all(actor_id=str(admin.id))
    await log_event(str(admin.id), "limits_reset", "system_config", "limits")
    return {"limits": limits}


# Wallet adjustments

@router.post("/users/{user_id}/credit")
async def admin_credit_user(user_id: PydanticObjectId, body: CreditRequest, admin: User = Depends(require_admin)):
    """Bonus credit to a user's wallet."""
    result = await adjustments.admin_credit(str(user_id), body.amount, body.reason, actor_id=str(admin.id))
    return {"new_balance": result.new_balance, "transaction_id": result.transaction_id}


@router.post("/users/{user_id}/refund")
async def admin_refund_user(user_id: PydanticObjectId, body: RefundRequest, admin: User = Depends(require_admin)):
    """Refund to a user's wallet, optionally against a specific charge."""
    result = await adjustments.admin_refund(
        str(user_id), body.amount, body.reason, actor_id=str(admin.id), transaction_id=body.transaction_id
    )
    return {"new_balance": result.new_balance, "transaction_id": result.transaction_id}


@router.get("/users/{user_id}/wallet/audit")
async def admin_audit_wallet(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    """Replay the transaction log and compare it with the stored balance and totals."""
    wallet = await ledger.get_wallet(str(user_id))
    if not wallet:
        raise NotFoundError("Wallet not found")
    return ledger.replay(wallet)
