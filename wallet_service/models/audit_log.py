from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    actor_id: str | None = None  # admin or user who triggered it; None for system jobs
    account_id: str | None = None  # wallet owner affected
    event_type: str  # wallet_credit, wallet_refund, coupon_created, limits_updated, ...
    entity_type: str
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
        ]
