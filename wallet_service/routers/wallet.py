from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from wallet_service.deps import get_current_user, require_global_limit
from wallet_service.models.user import User
from wallet_service.models.wallet import TransactionType
from wallet_service.services import charges as charges_service
from wallet_service.services import coupons as coupons_service
from wallet_service.services import ledger
from wallet_service.services import topups as topups_service

router = APIRouter()


class CheckCouponRequest(BaseModel):
    code: str = Field(min_length=1)
    amount: float = Field(gt=0)


class CreateOrderRequest(BaseModel):
    amount: int = Field(gt=0)  # credited to the wallet
    coupon_code: str | None = None


class VerifyTopupRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


class ManualTopupRequest(BaseModel):
    amount: int = Field(default=500, gt=0)


class InterviewChargeRequest(BaseModel):
    interview_type: str | None = None


class UnlockFeatureRequest(BaseModel):
    feature: str


@router.get("")
async def wallet_summary(user: User = Depends(get_current_user)):
    """Balance and lifetime totals; creates the wallet on first access."""
    wallet = await ledger.get_or_create(str(user.id))
    return {
        "balance": wallet.balance,
        "currency": wallet.currency,
        "total_spent": wallet.total_spent,
        "total_topups": wallet.total_topups,
    }


@router.get("/transactions")
async def wallet_transactions(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    type: TransactionType | None = None,
):
    """Transaction history, newest first."""
    return await ledger.list_transactions(str(user.id), page=page, page_size=limit, type_filter=type)


@router.post("/check-coupon")
async def check_coupon(body: CheckCouponRequest, user: User = Depends(get_current_user)):
    """Validate a coupon for an amount; returns discount and final amount, or the reason it is invalid."""
    return await coupons_service.quote(body.code, str(user.id), body.amount)


@router.post("/topup/create-order")
async def create_topup_order(body: CreateOrderRequest, user: User = Depends(get_current_user)):
    """Create a gateway order for a top-up, or credit immediately when a coupon covers it all."""
    return await topups_service.create_topup_order(str(user.id), body.amount, body.coupon_code)


@router.post("/topup/verify")
async def verify_topup(body: VerifyTopupRequest, user: User = Depends(get_current_user)):
    """Checkout success callback: verify signature and credit the order (idempotent)."""
    return await topups_service.verify_topup(str(user.id), body.order_id, body.payment_id, body.signature)


@router.post("/topup/test")
async def manual_topup(body: ManualTopupRequest, user: User = Depends(get_current_user)):
    """Development-only top-up without a gateway."""
    result = await topups_service.manual_topup(str(user.id), body.amount)
    return {"new_balance": result.new_balance, "transaction_id": result.transaction_id}


@router.post("/interview/charge")
async def charge_interview(
    body: InterviewChargeRequest,
    user: User = Depends(get_current_user),
    _limit=Depends(require_global_limit("mockInterview")),
):
    """Charge one AI mock interview session."""
    return await charges_service.charge_interview(user, body.interview_type)


@router.post("/unlock-feature")
async def unlock_feature(body: UnlockFeatureRequest, user: User = Depends(get_current_user)):
    """Unlock a premium feature using wallet balance."""
    return await charges_service.unlock_feature(user, body.feature)
