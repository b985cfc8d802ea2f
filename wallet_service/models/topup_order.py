from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import Field


class TopupStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # claimed by verify or webhook while the credit is applied
    COMPLETED = "completed"
    FAILED = "failed"


class TopupOrder(Document):
    """Gateway order -> account and credit amount; verification never trusts client amounts."""
    order_id: Indexed(str, unique=True)
    account_id: str
    amount: int  # credited to the wallet
    payable_paise: int  # charged by the gateway after discount
    currency: str = "INR"
    coupon_code: str | None = None
    discount: float = 0
    gateway: str = "razorpay"  # razorpay | coupon_free
    status: TopupStatus = TopupStatus.PENDING
    payment_id: str | None = None
    transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "topup_orders"
        indexes = [[("account_id", 1), ("created_at", -1)], [("status", 1), ("created_at", 1)]]
