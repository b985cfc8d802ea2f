from wallet_service.models.user import User
from wallet_service.models.wallet import Wallet, WalletTransaction, TransactionType, TransactionStatus
from wallet_service.models.coupon import Coupon, CouponUsage, DiscountType
from wallet_service.models.limit_config import GlobalLimitConfig, LimitCounter
from wallet_service.models.topup_order import TopupOrder, TopupStatus
from wallet_service.models.audit_log import AuditLog
from wallet_service.models.failed_job import FailedJob

__all__ = [
    "User",
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionStatus",
    "Coupon",
    "CouponUsage",
    "DiscountType",
    "GlobalLimitConfig",
    "LimitCounter",
    "TopupOrder",
    "TopupStatus",
    "AuditLog",
    "FailedJob",
]
