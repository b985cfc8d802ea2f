"""Administrator wallet adjustments: bonus credits and refunds, always audited."""

from wallet_service.core.audit import log_event
from wallet_service.core.exceptions import NotFoundError
from wallet_service.models.user import User
from wallet_service.models.wallet import TransactionType
from wallet_service.services import ledger
from wallet_service.services.ledger import LedgerResult


async def _require_account(account_id: str) -> User:
    user = await User.get(account_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def admin_credit(account_id: str, amount: int, reason: str | None, actor_id: str) -> LedgerResult:
    await _require_account(account_id)
    description = reason or f"Bonus credit: {amount}"
    result = await ledger.credit(
        account_id,
        amount,
        TransactionType.BONUS,
        description=description,
        metadata={"gateway": "admin_credit", "actor_id": actor_id},
    )
    await log_event(
        actor_id,
        "wallet_credit",
        "wallet",
        result.transaction_id,
        {"amount": amount, "reason": description, "new_balance": result.new_balance},
        account_id=account_id,
    )
    return result


async def admin_refund(
    account_id: str,
    amount: int,
    reason: str | None,
    actor_id: str,
    transaction_id: str | None = None,
) -> LedgerResult:
    if await ledger.get_wallet(account_id) is None:
        raise NotFoundError("Wallet not found")
    result = await ledger.refund(account_id, amount, reason or "", transaction_id=transaction_id, actor_id=actor_id)
    await log_event(
        actor_id,
        "wallet_refund",
        "wallet",
        result.transaction_id,
        {"amount": amount, "reason": reason, "refunded_transaction_id": transaction_id},
        account_id=account_id,
    )
    return result
