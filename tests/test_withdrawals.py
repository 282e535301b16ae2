"""Withdrawal workflow against the wallet ledger."""

import asyncio
from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import (
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
)
from app.models.audit_log import AuditLog
from app.models.transaction import Transaction
from app.models.withdrawal import BankDetails, Withdrawal
from app.services import wallet as wallet_service
from app.services import withdrawals as withdrawals_service

pytestmark = pytest.mark.asyncio


async def test_request_approve_complete(make_user):
    user = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 500)

    w = await withdrawals_service.request_withdrawal(user.id, 300, BankDetails(upi_id="user@upi"))
    assert w.status == "pending"
    # Nothing is held at request time.
    assert await wallet_service.current_balance(user.id) == 500

    w, wallet = await withdrawals_service.approve(w.id, admin.id, remarks="ok")
    assert w.status == "approved"
    assert w.debited is True
    assert w.approved_by == admin.id
    assert w.approval_date is not None
    assert w.remarks == "ok"
    assert wallet.balance == 200
    assert wallet.total_withdrawn == 300

    txn = await Transaction.get(w.debit_transaction_id)
    assert txn.type == "debit"
    assert txn.amount == 300
    assert txn.reference_id == str(w.id)
    assert await AuditLog.find(AuditLog.event_type == "withdrawal_approved").count() == 1

    w = await withdrawals_service.complete(w.id, admin_id=admin.id)
    assert w.status == "completed"
    assert w.completion_date is not None
    assert await wallet_service.current_balance(user.id) == 200


async def test_request_above_balance(make_user):
    user = await make_user()
    await wallet_service.credit(user.id, 100)
    with pytest.raises(InsufficientBalanceError):
        await withdrawals_service.request_withdrawal(user.id, 200)
    assert await Withdrawal.find_all().count() == 0


async def test_request_below_minimum(make_user):
    user = await make_user()
    await wallet_service.credit(user.id, 1000)
    with pytest.raises(BelowMinimumError) as exc:
        await withdrawals_service.request_withdrawal(user.id, 199)
    assert exc.value.details == {"minimum": 200}


async def test_approve_fails_when_balance_dropped(make_user):
    user = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 400)
    first = await withdrawals_service.request_withdrawal(user.id, 300)
    second = await withdrawals_service.request_withdrawal(user.id, 300)

    await withdrawals_service.approve(first.id, admin.id)
    with pytest.raises(InsufficientBalanceError):
        await withdrawals_service.approve(second.id, admin.id)

    second = await Withdrawal.get(second.id)
    assert second.status == "pending"
    assert second.debit_transaction_id is None
    assert await wallet_service.current_balance(user.id) == 100


async def test_concurrent_approvals_debit_once(make_user):
    user = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 500)
    w = await withdrawals_service.request_withdrawal(user.id, 300)

    results = await asyncio.gather(
        withdrawals_service.approve(w.id, admin.id),
        withdrawals_service.approve(w.id, admin.id),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidStateError)
    assert await wallet_service.current_balance(user.id) == 200
    assert await Transaction.find(Transaction.type == "debit").count() == 1


async def test_transitions_require_expected_status(make_user):
    user = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 500)
    w = await withdrawals_service.request_withdrawal(user.id, 250)

    with pytest.raises(InvalidStateError):
        await withdrawals_service.complete(w.id)

    w = await withdrawals_service.reject(w.id, "bad details", admin_id=admin.id)
    assert w.status == "rejected"
    assert w.remarks == "bad details"
    assert await wallet_service.current_balance(user.id) == 500

    with pytest.raises(InvalidStateError) as exc:
        await withdrawals_service.approve(w.id, admin.id)
    assert exc.value.details == {"status": "rejected"}
    with pytest.raises(InvalidStateError):
        await withdrawals_service.reject(w.id)


async def test_unknown_withdrawal(db):
    with pytest.raises(NotFoundError):
        await withdrawals_service.approve(PydanticObjectId(), PydanticObjectId())


async def test_listing(make_user):
    user = await make_user()
    other = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 1000)
    await wallet_service.credit(other.id, 1000)
    a = await withdrawals_service.request_withdrawal(user.id, 200)
    await withdrawals_service.request_withdrawal(user.id, 300)
    await withdrawals_service.request_withdrawal(other.id, 400)
    await withdrawals_service.reject(a.id, admin_id=admin.id)

    mine = await withdrawals_service.list_for_user(user.id)
    assert [w.amount for w in mine] == [300, 200]

    pending = await withdrawals_service.list_all("pending")
    assert pending["total"] == 2
    everything = await withdrawals_service.list_all(page=1, limit=2)
    assert everything["total"] == 3
    assert everything["pages"] == 2
    assert len(everything["items"]) == 2


async def test_complete_requires_recorded_debit(make_user, monkeypatch):
    user = await make_user()
    admin = await make_user(role="admin")
    await wallet_service.credit(user.id, 500)
    w = await withdrawals_service.request_withdrawal(user.id, 300)
    attempts = []

    async def _debit_then_fail(*args, **kwargs):
        # Another admin tries to complete while the debit is in flight.
        try:
            await withdrawals_service.complete(w.id, admin_id=admin.id)
        except InvalidStateError as e:
            attempts.append(e)
        raise ConnectionError("store unavailable")

    monkeypatch.setattr(wallet_service, "debit", _debit_then_fail)
    with pytest.raises(ConnectionError):
        await withdrawals_service.approve(w.id, admin.id)
    monkeypatch.undo()

    assert len(attempts) == 1
    assert attempts[0].message == "Withdrawal debit has not been recorded yet"
    assert attempts[0].details == {"status": "approved"}
    stuck = await Withdrawal.get(w.id)
    assert (stuck.status, stuck.debited) == ("approved", False)
    assert await wallet_service.current_balance(user.id) == 500

    # Once the sweep has applied the debit the payout can be completed.
    from app.services import reconciliation
    later = datetime.utcnow() + timedelta(minutes=5)
    assert (await reconciliation.reconcile(now=later))["resumed"] == 1
    done = await withdrawals_service.complete(w.id, admin_id=admin.id)
    assert done.status == "completed"
    assert await wallet_service.current_balance(user.id) == 200
