"""Ledger store: balances, snapshots, insufficient funds, idempotency, refunds."""

import asyncio

import pytest

from wallet_service.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
)
from wallet_service.models.wallet import TransactionStatus, TransactionType, Wallet
from wallet_service.services import ledger

pytestmark = pytest.mark.asyncio


async def test_get_or_create_is_idempotent():
    first = await ledger.get_or_create("acct-1")
    second = await ledger.get_or_create("acct-1")
    assert first.id == second.id
    assert second.balance == 0
    assert second.currency == "INR"
    assert await Wallet.find(Wallet.account_id == "acct-1").count() == 1


async def test_credit_debit_scenario():
    r1 = await ledger.credit("acct-1", 500, TransactionType.TOPUP)
    assert r1.new_balance == 500

    r2 = await ledger.debit("acct-1", 200, TransactionType.CALL_CHARGE, "Mentor call")
    assert r2.new_balance == 300

    with pytest.raises(InsufficientFundsError) as exc:
        await ledger.debit("acct-1", 400, TransactionType.CALL_CHARGE)
    assert exc.value.details == {"balance": 300, "required": 400, "shortfall": 100}

    wallet = await ledger.get_wallet("acct-1")
    assert wallet.balance == 300
    assert [t.balance_after for t in wallet.transactions] == [500, 300]
    assert [t.amount for t in wallet.transactions] == [500, -200]
    assert wallet.total_topups == 500
    assert wallet.total_spent == 200


async def test_replay_matches_stored_totals():
    await ledger.credit("acct-1", 1000, TransactionType.TOPUP)
    await ledger.credit("acct-1", 50, TransactionType.BONUS)
    await ledger.debit("acct-1", 100, TransactionType.INTERVIEW_CHARGE)
    await ledger.debit("acct-1", 60, TransactionType.DOUBT_CHARGE)
    await ledger.credit("acct-1", 60, TransactionType.REFUND)
    await ledger.debit("acct-1", 900, TransactionType.WITHDRAWAL)

    wallet = await ledger.get_wallet("acct-1")
    check = ledger.replay(wallet)
    assert check["consistent"] is True
    assert wallet.balance == 50
    assert wallet.total_spent == 1060
    assert wallet.total_topups == 1000  # bonus and refund are not top-ups


async def test_debit_on_new_account_fails_without_writing():
    with pytest.raises(InsufficientFundsError):
        await ledger.debit("acct-new", 1, TransactionType.CALL_CHARGE)
    wallet = await ledger.get_wallet("acct-new")
    assert wallet.balance == 0
    assert wallet.transactions == []


async def test_exact_balance_debit_allowed():
    await ledger.credit("acct-1", 100)
    result = await ledger.debit("acct-1", 100, TransactionType.INTERVIEW_CHARGE)
    assert result.new_balance == 0


@pytest.mark.parametrize("amount", [0, -5])
async def test_non_positive_amounts_rejected(amount):
    with pytest.raises(BadRequestError):
        await ledger.credit("acct-1", amount)
    with pytest.raises(BadRequestError):
        await ledger.debit("acct-1", amount, TransactionType.CALL_CHARGE)


async def test_transaction_type_must_match_direction():
    with pytest.raises(BadRequestError):
        await ledger.credit("acct-1", 10, TransactionType.CALL_CHARGE)
    with pytest.raises(BadRequestError):
        await ledger.debit("acct-1", 10, TransactionType.BONUS)
    with pytest.raises(BadRequestError):
        await ledger.credit("acct-1", 10, "cashback")


async def test_idempotency_key_prevents_double_credit():
    first = await ledger.credit("acct-1", 250, idempotency_key="razorpay_pay_1")
    again = await ledger.credit("acct-1", 250, idempotency_key="razorpay_pay_1")
    assert again.replayed is True
    assert again.transaction_id == first.transaction_id
    wallet = await ledger.get_wallet("acct-1")
    assert wallet.balance == 250
    assert len(wallet.transactions) == 1


async def test_concurrent_debits_only_one_lands():
    await ledger.credit("acct-1", 100)
    results = await asyncio.gather(
        ledger.debit("acct-1", 80, TransactionType.CALL_CHARGE),
        ledger.debit("acct-1", 80, TransactionType.CALL_CHARGE),
        return_exceptions=True,
    )
    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(successes) == 1
    assert len(failures) == 1
    wallet = await ledger.get_wallet("acct-1")
    assert wallet.balance == 20
    assert ledger.replay(wallet)["consistent"] is True


async def test_version_conflict_exhaustion_raises_conflict(monkeypatch):
    async def always_stale(wallet, plan):
        return False

    monkeypatch.setattr(ledger, "_commit", always_stale)
    with pytest.raises(ConflictError):
        await ledger.credit("acct-1", 10)


async def test_refund_marks_original_charge():
    await ledger.credit("acct-1", 300)
    charge = await ledger.debit("acct-1", 100, TransactionType.CALL_CHARGE, "Mentor call")

    result = await ledger.refund("acct-1", 100, "call dropped", transaction_id=charge.transaction_id)
    assert result.new_balance == 300

    wallet = await ledger.get_wallet("acct-1")
    original = wallet.find_transaction(charge.transaction_id)
    assert original.status == TransactionStatus.REFUNDED
    refund_txn = wallet.transactions[-1]
    assert refund_txn.type == TransactionType.REFUND
    assert refund_txn.metadata["refunded_transaction_id"] == charge.transaction_id
    assert wallet.total_spent == 100
    assert ledger.replay(wallet)["consistent"] is True

    with pytest.raises(ConflictError):
        await ledger.refund("acct-1", 100, transaction_id=charge.transaction_id)


async def test_refund_validation():
    top = await ledger.credit("acct-1", 300)
    charge = await ledger.debit("acct-1", 50, TransactionType.DOUBT_CHARGE)
    with pytest.raises(BadRequestError):
        await ledger.refund("acct-1", 60, transaction_id=charge.transaction_id)
    with pytest.raises(BadRequestError):
        await ledger.refund("acct-1", 10, transaction_id=top.transaction_id)
    with pytest.raises(NotFoundError):
        await ledger.refund("acct-1", 10, transaction_id="missing")


async def test_list_transactions_newest_first_with_filter():
    await ledger.credit("acct-1", 500)
    await ledger.debit("acct-1", 100, TransactionType.CALL_CHARGE, "first call")
    await ledger.debit("acct-1", 100, TransactionType.INTERVIEW_CHARGE)
    await ledger.debit("acct-1", 100, TransactionType.CALL_CHARGE, "second call")

    page = await ledger.list_transactions("acct-1", page=1, page_size=2)
    assert page.total == 4
    assert page.pages == 2
    assert [t.balance_after for t in page.items] == [200, 300]

    calls = await ledger.list_transactions("acct-1", type_filter="call_charge")
    assert [t.description for t in calls.items] == ["second call", "first call"]


async def test_list_transactions_without_wallet_has_no_side_effects():
    page = await ledger.list_transactions("ghost")
    assert page.items == []
    assert page.total == 0
    assert await ledger.get_wallet("ghost") is None
