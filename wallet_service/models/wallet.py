import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from beanie import Document, Indexed
from pydantic import BaseModel, Field


class TransactionType(str, Enum):
    TOPUP = "topup"
    CALL_CHARGE = "call_charge"
    DOUBT_CHARGE = "doubt_charge"
    INTERVIEW_CHARGE = "interview_charge"
    REFUND = "refund"
    BONUS = "bonus"
    WITHDRAWAL = "withdrawal"

    @property
    def is_credit(self) -> bool:
        return self in CREDIT_TYPES


CREDIT_TYPES = frozenset({TransactionType.TOPUP, TransactionType.REFUND, TransactionType.BONUS})


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class WalletTransaction(BaseModel):
    """One ledger line. Amount is signed: positive = credit, negative = debit."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: TransactionType
    amount: int
    description: str = ""
    status: TransactionStatus = TransactionStatus.COMPLETED
    balance_after: int
    idempotency_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)  # gateway, order_id, payment_id, actor_id
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Wallet(Document):
    """Balance plus append-only transaction log for one account."""
    account_id: Indexed(str, unique=True)
    balance: int = 0
    currency: str = "INR"
    total_spent: int = 0
    total_topups: int = 0
    transactions: list[WalletTransaction] = Field(default_factory=list)
    version: int = 0  # bumped on every write; guards read-modify-write
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def find_transaction(self, transaction_id: str) -> WalletTransaction | None:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def find_by_idempotency_key(self, key: str) -> WalletTransaction | None:
        return next((t for t in self.transactions if t.idempotency_key == key), None)

    class Settings:
        name = "wallets"
        indexes = [[("transactions.idempotency_key", 1)]]
