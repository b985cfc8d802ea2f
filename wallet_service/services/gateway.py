"""Razorpay order creation. The SDK client is synchronous; calls run in a worker thread."""

from typing import Any

from starlette.concurrency import run_in_threadpool

from wallet_service.core.config import get_settings
from wallet_service.core.exceptions import AppError, BadRequestError
from wallet_service.core.logging import get_logger

log = get_logger(__name__)


class GatewayUnavailableError(AppError):
    def __init__(self, message: str = "Payment gateway error, try again later"):
        super().__init__(message, code="GATEWAY_ERROR", status_code=502)


def _client():
    import razorpay
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


async def create_order(amount_paise: int, currency: str, receipt: str, notes: dict[str, Any]) -> dict[str, Any]:
    """Create a gateway order; returns the Razorpay order entity (id, amount, currency, ...)."""
    from razorpay.errors import BadRequestError as RazorpayBadRequest, GatewayError, ServerError
    client = _client()
    try:
        order = await run_in_threadpool(
            client.order.create,
            {"amount": amount_paise, "currency": currency, "receipt": receipt, "notes": notes},
        )
    except (RazorpayBadRequest, GatewayError, ServerError) as e:
        log.error("gateway_order_failed", amount_paise=amount_paise, error=str(e))
        raise GatewayUnavailableError() from e
    log.info("gateway_order_created", order_id=order.get("id"), amount_paise=amount_paise)
    return order
