from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    """Account identity as issued by the auth service; the wallet only reads it."""
    email: Indexed(str, unique=True)
    name: str = ""
    role: str = "user"  # "user" | "admin"
    is_active: bool = True
    session_version: int = 0
    unlocked_features: dict[str, datetime] = Field(default_factory=dict)  # feature -> expires_at
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    class Settings:
        name = "users"
