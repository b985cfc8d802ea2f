import uuid
from datetime import datetime, timezone
from enum import Enum

from beanie import Document, Indexed
from pydantic import BaseModel, Field, field_validator, model_validator


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponUsage(BaseModel):
    redemption_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    account_id: str
    used_at: datetime = Field(default_factory=datetime.utcnow)
    order_id: str | None = None


class Coupon(Document):
    code: Indexed(str, unique=True)  # stored upper-cased
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    min_purchase: float = Field(default=0, ge=0)
    max_discount: float | None = Field(default=None, ge=0)  # cap for percentage coupons
    usage_limit: int | None = Field(default=None, ge=0)  # None = unlimited
    used_count: int = 0
    per_user_limit: int = Field(default=1, ge=1)
    valid_from: datetime = Field(default_factory=datetime.utcnow)
    valid_to: datetime
    is_active: bool = True
    created_by: str | None = None
    used_by: list[CouponUsage] = Field(default_factory=list)
    usage_counts: dict[str, int] = Field(default_factory=dict)  # account_id -> redemptions
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        v = normalize_code(v)
        if not v:
            raise ValueError("code must not be empty")
        return v

    @field_validator("valid_from", "valid_to")
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_window(self) -> "Coupon":
        if self.valid_to < self.valid_from:
            raise ValueError("valid_to must not be before valid_from")
        return self

    def uses_by(self, account_id: str) -> int:
        return self.usage_counts.get(account_id, 0)

    class Settings:
        name = "coupons"
        indexes = [[("is_active", 1), ("valid_to", 1)]]


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()
