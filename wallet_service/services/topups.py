"""Wallet top-ups: Razorpay orders, verification, webhook, coupon + credit unit of work."""

import json
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from wallet_service.core.audit import log_event
from wallet_service.core.config import get_settings
from wallet_service.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidCouponError,
    NotFoundError,
)
from wallet_service.core.logging import get_logger
from wallet_service.core.security import verify_razorpay_payment, verify_razorpay_webhook
from wallet_service.models.coupon import Coupon, normalize_code
from wallet_service.models.topup_order import TopupOrder, TopupStatus
from wallet_service.models.wallet import TransactionType
from wallet_service.services import coupons as coupons_service
from wallet_service.services import gateway
from wallet_service.services import ledger
from wallet_service.services.ledger import LedgerResult, storage_errors

log = get_logger(__name__)

CLAIM_TIMEOUT = timedelta(minutes=5)


async def credit_with_coupon(
    account_id: str,
    amount: int,
    coupon: Coupon | None,
    order_id: str,
    idempotency_key: str,
    description: str = "",
    metadata: dict[str, Any] | None = None,
    check_window: bool = True,
) -> LedgerResult:
    """Credit a top-up and redeem its coupon as one unit of work.

    The coupon is reserved first; if the credit then fails, or turns out to be a
    replay of an already-applied idempotency key, the reservation is released.
    A coupon rejection caused by a concurrent caller that already applied the
    same key is reported as that replay.
    """
    if await _already_applied(account_id, idempotency_key):
        return await ledger.credit(account_id, amount, TransactionType.TOPUP, idempotency_key=idempotency_key)

    usage = None
    if coupon is not None:
        try:
            usage = await coupons_service.redeem(coupon, account_id, order_id=order_id, check_window=check_window)
        except InvalidCouponError:
            if await _already_applied(account_id, idempotency_key):
                log.info("topup_coupon_already_applied", account_id=account_id, order_id=order_id)
                return await ledger.credit(account_id, amount, TransactionType.TOPUP, idempotency_key=idempotency_key)
            raise
    try:
        result = await ledger.credit(
            account_id,
            amount,
            TransactionType.TOPUP,
            description=description,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )
    except Exception:
        if usage is not None:
            await coupons_service.release(coupon, usage)
        raise
    if result.replayed and usage is not None:
        await coupons_service.release(coupon, usage)
    return result


async def _already_applied(account_id: str, idempotency_key: str) -> bool:
    wallet = await ledger.get_wallet(account_id)
    return wallet is not None and wallet.find_by_idempotency_key(idempotency_key) is not None


def _to_paise(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


@storage_errors
async def create_topup_order(
    account_id: str,
    amount: int,
    coupon_code: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Price a top-up. A coupon that covers the whole amount credits immediately without the gateway."""
    settings = get_settings()
    if amount < settings.topup_min_amount:
        raise BadRequestError(
            f"Minimum top-up amount is {settings.topup_min_amount}",
            details={"min": settings.topup_min_amount},
        )
    if amount > settings.topup_max_amount:
        raise BadRequestError(
            f"Maximum top-up amount is {settings.topup_max_amount}",
            details={"max": settings.topup_max_amount},
        )

    coupon = None
    discount = Decimal("0")
    if coupon_code:
        coupon = await coupons_service.get_by_code(coupon_code)
        q = coupons_service.build_quote(coupon, account_id, amount, now=now)
        if not q.valid:
            raise InvalidCouponError(q.reason.value, details={"code": coupon.code, "min_purchase": coupon.min_purchase})
        discount = q.discount
    payable = Decimal(amount) - discount

    if payable <= 0:
        order_id = f"free_{uuid.uuid4().hex}"
        result = await credit_with_coupon(
            account_id,
            amount,
            coupon,
            order_id,
            idempotency_key=f"coupon_free_{order_id}",
            description=f"Wallet top-up of {amount} (100% discount)",
            metadata={"gateway": "coupon_free", "order_id": order_id, "coupon_code": coupon.code if coupon else None},
        )
        await TopupOrder(
            order_id=order_id,
            account_id=account_id,
            amount=amount,
            payable_paise=0,
            currency=settings.wallet_currency,
            coupon_code=coupon.code if coupon else None,
            discount=float(discount),
            gateway="coupon_free",
            status=TopupStatus.COMPLETED,
            transaction_id=result.transaction_id,
        ).insert()
        log.info("topup_instant", account_id=account_id, amount=amount, order_id=order_id)
        return {
            "instant_success": True,
            "order_id": order_id,
            "new_balance": result.new_balance,
            "transaction_id": result.transaction_id,
        }

    payable_paise = _to_paise(payable)
    order = await gateway.create_order(
        payable_paise,
        settings.wallet_currency,
        receipt=f"wallet_{uuid.uuid4().hex[:24]}",
        notes={"account_id": account_id, "original_amount": amount, "coupon_code": coupon.code if coupon else ""},
    )
    await TopupOrder(
        order_id=order["id"],
        account_id=account_id,
        amount=amount,
        payable_paise=payable_paise,
        currency=settings.wallet_currency,
        coupon_code=coupon.code if coupon else None,
        discount=float(discount),
    ).insert()
    return {
        "instant_success": False,
        "order_id": order["id"],
        "amount": payable_paise,
        "original_amount": amount,
        "discount": float(discount),
        "coupon_code": coupon.code if coupon else None,
        "currency": settings.wallet_currency,
        "key_id": settings.razorpay_key_id,
    }


async def _set_order(order_id: str, **fields: Any) -> None:
    fields["updated_at"] = datetime.utcnow()
    await TopupOrder.get_motor_collection().update_one({"order_id": order_id}, {"$set": fields})


async def _claim_order(order_id: str) -> bool:
    """Move an order to processing; only one of concurrent verify/webhook calls wins.

    Failed orders stay claimable (a capture can arrive after expiry), as do
    processing claims older than ``CLAIM_TIMEOUT`` left by a crashed worker.
    """
    now = datetime.utcnow()
    result = await TopupOrder.get_motor_collection().update_one(
        {
            "order_id": order_id,
            "$or": [
                {"status": {"$in": [TopupStatus.PENDING.value, TopupStatus.FAILED.value]}},
                {"status": TopupStatus.PROCESSING.value, "updated_at": {"$lt": now - CLAIM_TIMEOUT}},
            ],
        },
        {"$set": {"status": TopupStatus.PROCESSING.value, "updated_at": now}},
    )
    return result.modified_count == 1


async def _replay_completed(order: TopupOrder) -> dict[str, Any]:
    wallet = await ledger.get_or_create(order.account_id)
    return {"new_balance": wallet.balance, "transaction_id": order.transaction_id, "replayed": True}


@storage_errors
async def complete_order(order: TopupOrder, payment_id: str) -> dict[str, Any]:
    """Credit a paid order exactly once; safe to call from both checkout verify and the webhook."""
    if order.status == TopupStatus.COMPLETED:
        return await _replay_completed(order)
    if not await _claim_order(order.order_id):
        current = await TopupOrder.find_one(TopupOrder.order_id == order.order_id)
        if current is not None and current.status == TopupStatus.COMPLETED:
            return await _replay_completed(current)
        log.info("topup_order_busy", order_id=order.order_id, payment_id=payment_id)
        raise ConflictError("Payment is already being processed", details={"order_id": order.order_id})

    coupon = None
    if order.coupon_code:
        coupon = await Coupon.find_one(Coupon.code == normalize_code(order.coupon_code))
        if coupon is None:
            log.warning("topup_coupon_missing", order_id=order.order_id, coupon_code=order.coupon_code)
    try:
        result = await credit_with_coupon(
            order.account_id,
            order.amount,
            coupon,
            order.order_id,
            idempotency_key=f"razorpay_{payment_id}",
            description=f"Wallet top-up of {order.amount}",
            metadata={"gateway": order.gateway, "order_id": order.order_id, "payment_id": payment_id},
            check_window=False,
        )
    except InvalidCouponError as e:
        await _set_order(
            order.order_id,
            status=TopupStatus.FAILED.value,
            payment_id=payment_id,
            failure_reason=f"coupon_{e.reason}",
        )
        log.error("topup_coupon_rejected_after_payment", order_id=order.order_id, payment_id=payment_id, reason=e.reason)
        raise
    except Exception:
        # Hand the claim back so a retried verify or webhook can complete it.
        await _set_order(order.order_id, status=TopupStatus.PENDING.value)
        raise

    await _set_order(
        order.order_id,
        status=TopupStatus.COMPLETED.value,
        payment_id=payment_id,
        transaction_id=result.transaction_id,
        failure_reason=None,
    )
    await log_event(
        order.account_id,
        "wallet_topup",
        "topup_order",
        order.order_id,
        {"amount": order.amount, "payment_id": payment_id, "coupon_code": order.coupon_code},
        account_id=order.account_id,
    )
    return {"new_balance": result.new_balance, "transaction_id": result.transaction_id, "replayed": result.replayed}


async def verify_topup(account_id: str, order_id: str, payment_id: str, signature: str) -> dict[str, Any]:
    """Checkout callback: check the payment signature, then credit the server-side order amount."""
    settings = get_settings()
    if not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    if not verify_razorpay_payment(order_id, payment_id, signature, settings.razorpay_key_secret):
        raise BadRequestError("Invalid payment signature")
    order = await TopupOrder.find_one(TopupOrder.order_id == order_id)
    if not order or order.account_id != account_id:
        raise NotFoundError("Order not found")
    return await complete_order(order, payment_id)


async def handle_webhook(payload: bytes, signature: str) -> None:
    """Verify HMAC; payment.captured completes the order, payment.failed marks it failed."""
    settings = get_settings()
    if not settings.razorpay_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not verify_razorpay_webhook(payload, signature, settings.razorpay_webhook_secret):
        raise BadRequestError("Invalid webhook signature")
    data = json.loads(payload.decode())
    if not isinstance(data, dict):
        return
    event = data.get("event")
    payment = ((data.get("payload") or {}).get("payment") or {}).get("entity") or {}
    order_id = payment.get("order_id")
    payment_id = payment.get("id")
    if event not in ("payment.captured", "payment.failed") or not order_id or not payment_id:
        return
    order = await TopupOrder.find_one(TopupOrder.order_id == order_id)
    if not order:
        log.warning("webhook_unknown_order", order_id=order_id, webhook_event=event)
        return
    if event == "payment.captured":
        await complete_order(order, payment_id)
        return
    result = await TopupOrder.get_motor_collection().update_one(
        {"order_id": order_id, "status": TopupStatus.PENDING.value},
        {
            "$set": {
                "status": TopupStatus.FAILED.value,
                "payment_id": payment_id,
                "failure_reason": payment.get("error_description") or "payment_failed",
                "updated_at": datetime.utcnow(),
            }
        },
    )
    if result.modified_count:
        log.info("topup_payment_failed", order_id=order_id, payment_id=payment_id)


async def manual_topup(account_id: str, amount: int) -> LedgerResult:
    """Development helper: credit without a gateway. Refused in production."""
    if get_settings().is_production:
        raise ForbiddenError("Test top-up not allowed in production")
    suffix = uuid.uuid4().hex
    return await ledger.credit(
        account_id,
        amount,
        TransactionType.TOPUP,
        description=f"Test top-up of {amount}",
        metadata={"gateway": "manual", "order_id": f"test_order_{suffix}"},
    )


@storage_errors
async def expire_stale_orders(now: datetime | None = None) -> int:
    """Mark pending orders older than the configured TTL as failed; returns how many."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=get_settings().topup_order_ttl_minutes)
    result = await TopupOrder.get_motor_collection().update_many(
        {"status": TopupStatus.PENDING.value, "created_at": {"$lt": cutoff}},
        {"$set": {"status": TopupStatus.FAILED.value, "failure_reason": "expired", "updated_at": now}},
    )
    if result.modified_count:
        log.info("topup_orders_expired", count=result.modified_count)
    return result.modified_count
