from datetime import datetime

from beanie import Document, Indexed
from pydantic import BaseModel, Field

LIMITS_KEY = "limits"


class LimitCounter(BaseModel):
    max: int = Field(ge=0)
    current: int = 0


class GlobalLimitConfig(Document):
    """Singleton (key="limits"): daily caps per operation type, shared by all accounts."""
    key: Indexed(str, unique=True) = LIMITS_KEY
    limits: dict[str, LimitCounter] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=datetime.utcnow)  # day rollover is detected from this
    updated_by: str | None = None

    class Settings:
        name = "system_config"
