from fastapi import APIRouter, Header, Request

from wallet_service.services import topups as topups_service

router = APIRouter()


@router.post("/webhook")
async def razorpay_webhook(request: Request, x_razorpay_signature: str = Header(..., alias="X-Razorpay-Signature")):
    """Razorpay webhook: payment.captured -> credit the top-up order (idempotent)."""
    body = await request.body()
    await topups_service.handle_webhook(body, x_razorpay_signature)
    return {"status": "ok"}
