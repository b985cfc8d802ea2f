"""Wallet ledger: per-account balance with an append-only transaction log.

Every mutation is a single conditional ``update_one`` on the wallet document,
matched on the ``version`` read just before. A concurrent writer bumps the
version, so the loser re-reads and recomputes; two debits that the balance can
only cover once therefore never both land. ``balance_after`` on each appended
transaction is computed from the exact document state it was applied to.
"""

import functools
from datetime import datetime
from typing import Any, Callable, NamedTuple

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from wallet_service.core.config import get_settings
from wallet_service.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    StorageError,
)
from wallet_service.core.logging import get_logger
from wallet_service.core.pagination import Page, slice_page
from wallet_service.models.wallet import (
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletTransaction,
)

log = get_logger(__name__)


class LedgerResult(BaseModel):
    new_balance: int
    transaction_id: str
    replayed: bool = False  # idempotency key already applied; nothing written


class _Plan(NamedTuple):
    txn: WalletTransaction
    fields: dict[str, Any]  # $set paths; a full "transactions" value replaces the log instead of appending


def storage_errors(fn):
    """Surface driver failures as StorageError; callers own the retry policy."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except PyMongoError as e:
            log.error("ledger_storage_error", op=fn.__name__, error=str(e))
            raise StorageError() from e

    return wrapper


def _dump(txn: WalletTransaction) -> dict[str, Any]:
    data = txn.model_dump()
    data["type"] = txn.type.value
    data["status"] = txn.status.value
    return data


@storage_errors
async def get_wallet(account_id: str) -> Wallet | None:
    return await Wallet.find_one(Wallet.account_id == account_id)


@storage_errors
async def get_or_create(account_id: str) -> Wallet:
    """Return the account's wallet, creating an empty one on first access."""
    wallet = await Wallet.find_one(Wallet.account_id == account_id)
    if wallet:
        return wallet
    wallet = Wallet(account_id=account_id, currency=get_settings().wallet_currency)
    try:
        await wallet.insert()
        log.info("wallet_created", account_id=account_id)
    except DuplicateKeyError:
        # Lost the create race; the unique index kept exactly one.
        wallet = await Wallet.find_one(Wallet.account_id == account_id)
    return wallet


async def _commit(wallet: Wallet, plan: _Plan) -> bool:
    update: dict[str, Any] = {
        "$set": {**plan.fields, "updated_at": datetime.utcnow()},
        "$inc": {"version": 1},
    }
    if "transactions" not in plan.fields:
        update["$push"] = {"transactions": _dump(plan.txn)}
    result = await Wallet.get_motor_collection().update_one(
        {"_id": wallet.id, "version": wallet.version}, update
    )
    return result.modified_count == 1


async def _mutate(account_id: str, make_plan: Callable[[Wallet], "_Plan | LedgerResult"]) -> LedgerResult:
    attempts = max(1, get_settings().ledger_max_attempts)
    for attempt in range(1, attempts + 1):
        wallet = await get_or_create(account_id)
        plan = make_plan(wallet)
        if isinstance(plan, LedgerResult):
            return plan
        if await _commit(wallet, plan):
            return LedgerResult(new_balance=plan.txn.balance_after, transaction_id=plan.txn.id)
        log.debug("ledger_version_conflict", account_id=account_id, attempt=attempt)
    log.warning("ledger_contention_exhausted", account_id=account_id, attempts=attempts)
    raise ConflictError("Wallet is busy, please retry", details={"account_id": account_id})


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise BadRequestError("Amount must be a positive integer", details={"amount": amount})


def _txn_type(value: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        raise BadRequestError(f"Unknown transaction type: {value}") from None


@storage_errors
async def credit(
    account_id: str,
    amount: int,
    type: TransactionType | str = TransactionType.TOPUP,
    description: str = "",
    idempotency_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LedgerResult:
    """Add funds. Re-using an idempotency key returns the original transaction instead of crediting twice."""
    _require_positive(amount)
    txn_type = _txn_type(type)
    if not txn_type.is_credit:
        raise BadRequestError(f"{txn_type.value} is not a credit transaction type")

    def plan(wallet: Wallet) -> _Plan | LedgerResult:
        if idempotency_key:
            existing = wallet.find_by_idempotency_key(idempotency_key)
            if existing:
                return LedgerResult(new_balance=wallet.balance, transaction_id=existing.id, replayed=True)
        balance_after = wallet.balance + amount
        fields: dict[str, Any] = {"balance": balance_after}
        if txn_type == TransactionType.TOPUP:
            fields["total_topups"] = wallet.total_topups + amount
        txn = WalletTransaction(
            type=txn_type,
            amount=amount,
            description=description or f"{txn_type.value.replace('_', ' ').capitalize()} of {amount}",
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            metadata=metadata or {},
        )
        return _Plan(txn, fields)

    result = await _mutate(account_id, plan)
    if result.replayed:
        log.info("ledger_credit_replayed", account_id=account_id, idempotency_key=idempotency_key)
    else:
        log.info(
            "ledger_credit",
            account_id=account_id,
            amount=amount,
            type=txn_type.value,
            balance_after=result.new_balance,
            transaction_id=result.transaction_id,
        )
    return result


@storage_errors
async def debit(
    account_id: str,
    amount: int,
    type: TransactionType | str,
    description: str = "",
    metadata: dict[str, Any] | None = None,
) -> LedgerResult:
    """Take funds. Raises InsufficientFundsError (no partial debit) when the balance does not cover it."""
    _require_positive(amount)
    txn_type = _txn_type(type)
    if txn_type.is_credit:
        raise BadRequestError(f"{txn_type.value} is not a debit transaction type")

    def plan(wallet: Wallet) -> _Plan:
        if wallet.balance < amount:
            raise InsufficientFundsError(balance=wallet.balance, required=amount)
        balance_after = wallet.balance - amount
        txn = WalletTransaction(
            type=txn_type,
            amount=-amount,
            description=description,
            balance_after=balance_after,
            metadata=metadata or {},
        )
        return _Plan(txn, {"balance": balance_after, "total_spent": wallet.total_spent + amount})

    try:
        result = await _mutate(account_id, plan)
    except InsufficientFundsError as e:
        log.info("ledger_debit_rejected", account_id=account_id, amount=amount, balance=e.balance)
        raise
    log.info(
        "ledger_debit",
        account_id=account_id,
        amount=amount,
        type=txn_type.value,
        balance_after=result.new_balance,
        transaction_id=result.transaction_id,
    )
    return result


@storage_errors
async def refund(
    account_id: str,
    amount: int,
    reason: str = "",
    transaction_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult:
    """Credit a refund; when ``transaction_id`` names a charge, mark that charge refunded."""
    _require_positive(amount)

    def plan(wallet: Wallet) -> _Plan:
        fields: dict[str, Any] = {}
        metadata: dict[str, Any] = {"actor_id": actor_id}
        if transaction_id:
            idx = next((i for i, t in enumerate(wallet.transactions) if t.id == transaction_id), None)
            if idx is None:
                raise NotFoundError("Transaction not found")
            original = wallet.transactions[idx]
            if original.amount >= 0:
                raise BadRequestError("Only charges can be refunded")
            if original.status == TransactionStatus.REFUNDED:
                raise ConflictError("Transaction already refunded", details={"transaction_id": transaction_id})
            if amount > -original.amount:
                raise BadRequestError(
                    "Refund exceeds the original charge",
                    details={"charged": -original.amount, "requested": amount},
                )
            metadata["refunded_transaction_id"] = transaction_id
        balance_after = wallet.balance + amount
        fields["balance"] = balance_after
        txn = WalletTransaction(
            type=TransactionType.REFUND,
            amount=amount,
            description=f"Refund: {reason}" if reason else "Refund",
            balance_after=balance_after,
            metadata=metadata,
        )
        if transaction_id:
            # $set on an element conflicts with $push on the array: rewrite the log in one write.
            log_lines = list(wallet.transactions)
            log_lines[idx] = log_lines[idx].model_copy(update={"status": TransactionStatus.REFUNDED})
            fields["transactions"] = [_dump(t) for t in log_lines] + [_dump(txn)]
        return _Plan(txn, fields)

    result = await _mutate(account_id, plan)
    log.info("ledger_refund", account_id=account_id, amount=amount, refunded_transaction_id=transaction_id)
    return result


@storage_errors
async def list_transactions(
    account_id: str,
    page: int = 1,
    page_size: int = 20,
    type_filter: TransactionType | str | None = None,
) -> Page[WalletTransaction]:
    """Newest first. Read only: an account without a wallet gets an empty page."""
    wallet = await Wallet.find_one(Wallet.account_id == account_id)
    items = list(reversed(wallet.transactions)) if wallet else []
    if type_filter:
        wanted = _txn_type(type_filter)
        items = [t for t in items if t.type == wanted]
    return slice_page(items, page, page_size)


def replay(wallet: Wallet) -> dict[str, Any]:
    """Recompute totals from the transaction log and compare with the stored values."""
    balance = spent = topups = 0
    snapshots_ok = True
    for t in wallet.transactions:
        balance += t.amount
        if t.amount < 0:
            spent += -t.amount
        if t.type == TransactionType.TOPUP:
            topups += t.amount
        if t.balance_after != balance:
            snapshots_ok = False
    return {
        "consistent": snapshots_ok
        and balance == wallet.balance
        and spent == wallet.total_spent
        and topups == wallet.total_topups,
        "balance": balance,
        "total_spent": spent,
        "total_topups": topups,
        "transactions": len(wallet.transactions),
    }
