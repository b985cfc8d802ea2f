import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from wallet_service.core.config import get_settings

SESSION_MAX_AGE_SECONDS = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="wallet-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    """Sign a session payload. Sessions are issued by the auth service; used here by tests and tooling."""
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(_hmac_sha256(secret, payload), signature)


def sign_razorpay_payment(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Checkout handler signature: HMAC-SHA256(order_id|payment_id) with the key secret."""
    return hmac.compare_digest(sign_razorpay_payment(order_id, payment_id, secret), signature or "")
