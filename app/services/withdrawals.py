"""Withdrawal workflow: pending -> approved -> completed, pending -> rejected.

Every transition is a conditional update on the current status, so two
admins acting on the same request cannot both win. Funds are not held at
request time; the wallet is debited at approval, where the sufficiency check
runs atomically against the live balance.
"""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
)
from app.core.logging import get_logger
from app.core.pagination import page_count, paginate
from app.models.wallet import Wallet
from app.models.withdrawal import BankDetails, Withdrawal, WithdrawalStatus
from app.services import wallet as wallet_service

log = get_logger(__name__)


async def get_withdrawal(withdrawal_id: PydanticObjectId) -> Withdrawal:
    withdrawal = await Withdrawal.get(withdrawal_id)
    if not withdrawal:
        raise NotFoundError("Withdrawal not found")
    return withdrawal


async def request_withdrawal(
    user_id: PydanticObjectId,
    amount: int,
    bank_details: BankDetails | None = None,
) -> Withdrawal:
    """Create a pending request. The balance check here is advisory; nothing is reserved."""
    minimum = get_settings().min_withdrawal_amount
    if amount < minimum:
        raise BelowMinimumError(minimum)
    wallet = await wallet_service.ensure_wallet(user_id)
    if wallet.balance < amount:
        raise InsufficientBalanceError(available=wallet.balance, required=amount)
    withdrawal = Withdrawal(user_id=user_id, amount=amount, bank_details=bank_details or BankDetails())
    await withdrawal.insert()
    log.info("withdrawal_requested", user_id=str(user_id), withdrawal_id=str(withdrawal.id), amount=amount)
    return withdrawal


def debit_description(withdrawal: Withdrawal) -> str:
    return f"Withdrawal approved - ID: {withdrawal.id}"


async def release_claim(withdrawal: Withdrawal) -> Withdrawal | None:
    """Return an approved-but-undebited withdrawal to pending."""
    return await Withdrawal.find_one(
        Withdrawal.id == withdrawal.id,
        Withdrawal.status == "approved",
        Withdrawal.debited == False,  # noqa: E712
        Withdrawal.debit_transaction_id == withdrawal.debit_transaction_id,
    ).update(
        Set({
            Withdrawal.status: "pending",
            Withdrawal.approved_by: None,
            Withdrawal.approval_date: None,
            Withdrawal.debit_transaction_id: None,
            Withdrawal.updated_at: datetime.utcnow(),
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def mark_debited(withdrawal: Withdrawal) -> Withdrawal:
    updated = await Withdrawal.find_one(Withdrawal.id == withdrawal.id).update(
        Set({Withdrawal.debited: True, Withdrawal.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    return updated or withdrawal


async def approve(
    withdrawal_id: PydanticObjectId,
    admin_id: PydanticObjectId,
    remarks: str | None = None,
) -> tuple[Withdrawal, Wallet]:
    """Claim a pending withdrawal for approval, then debit the wallet.

    The claim allocates the debit's transaction id up front; the debit is
    idempotent on it, so the reconciliation sweep can safely finish an
    approval that died between the two steps. If the live balance no longer
    covers the amount the claim is released and InsufficientBalanceError
    propagates.
    """
    withdrawal = await get_withdrawal(withdrawal_id)
    if withdrawal.status != "pending":
        raise InvalidStateError("Only pending withdrawals can be approved", withdrawal.status)

    now = datetime.utcnow()
    claim = {
        Withdrawal.status: "approved",
        Withdrawal.approved_by: admin_id,
        Withdrawal.approval_date: now,
        Withdrawal.debit_transaction_id: PydanticObjectId(),
        Withdrawal.debited: False,
        Withdrawal.updated_at: now,
    }
    if remarks:
        claim[Withdrawal.remarks] = remarks
    claimed = await Withdrawal.find_one(
        Withdrawal.id == withdrawal.id,
        Withdrawal.status == "pending",
    ).update(Set(claim), response_type=UpdateResponse.NEW_DOCUMENT)
    if claimed is None:
        current = await get_withdrawal(withdrawal_id)
        raise InvalidStateError("Only pending withdrawals can be approved", current.status)

    try:
        wallet, txn = await wallet_service.debit(
            claimed.user_id,
            claimed.amount,
            debit_description(claimed),
            reference_id=str(claimed.id),
            transaction_id=claimed.debit_transaction_id,
        )
    except (InsufficientBalanceError, NotFoundError):
        await release_claim(claimed)
        log.warning("withdrawal_approval_failed", withdrawal_id=str(claimed.id), amount=claimed.amount)
        raise

    claimed = await mark_debited(claimed)
    log.info(
        "withdrawal_approved",
        withdrawal_id=str(claimed.id),
        user_id=str(claimed.user_id),
        amount=claimed.amount,
        balance=wallet.balance,
        transaction_id=str(txn.id),
    )
    await log_event(
        str(admin_id),
        "withdrawal_approved",
        "withdrawal",
        str(claimed.id),
        {"amount": claimed.amount, "user_id": str(claimed.user_id), "transaction_id": str(txn.id)},
    )
    return claimed, wallet


async def _transition(
    withdrawal_id: PydanticObjectId,
    source: WithdrawalStatus,
    updates: dict,
    message: str,
    *conditions,
    unmet: str | None = None,
) -> Withdrawal:
    updates[Withdrawal.updated_at] = datetime.utcnow()
    updated = await Withdrawal.find_one(
        Withdrawal.id == withdrawal_id,
        Withdrawal.status == source,
        *conditions,
    ).update(Set(updates), response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_withdrawal(withdrawal_id)
        if current.status == source and unmet:
            raise InvalidStateError(unmet, current.status)
        raise InvalidStateError(message, current.status)
    return updated


async def reject(
    withdrawal_id: PydanticObjectId,
    remarks: str | None = None,
    admin_id: PydanticObjectId | None = None,
) -> Withdrawal:
    """pending -> rejected. No wallet effect."""
    updates: dict = {Withdrawal.status: "rejected"}
    if remarks:
        updates[Withdrawal.remarks] = remarks
    withdrawal = await _transition(withdrawal_id, "pending", updates, "Only pending withdrawals can be rejected")
    log.info("withdrawal_rejected", withdrawal_id=str(withdrawal.id))
    await log_event(
        str(admin_id) if admin_id else None,
        "withdrawal_rejected",
        "withdrawal",
        str(withdrawal.id),
        {"remarks": remarks or ""},
    )
    return withdrawal


async def complete(
    withdrawal_id: PydanticObjectId,
    remarks: str | None = None,
    admin_id: PydanticObjectId | None = None,
) -> Withdrawal:
    """approved -> completed. Bookkeeping only; the debit happened at approval.

    An approval whose debit has not been recorded yet (in flight, or left for
    the reconciliation sweep) cannot be completed.
    """
    updates: dict = {Withdrawal.status: "completed", Withdrawal.completion_date: datetime.utcnow()}
    if remarks:
        updates[Withdrawal.remarks] = remarks
    withdrawal = await _transition(
        withdrawal_id,
        "approved",
        updates,
        "Only approved withdrawals can be marked as completed",
        Withdrawal.debited == True,  # noqa: E712
        unmet="Withdrawal debit has not been recorded yet",
    )
    log.info("withdrawal_completed", withdrawal_id=str(withdrawal.id))
    await log_event(
        str(admin_id) if admin_id else None,
        "withdrawal_completed",
        "withdrawal",
        str(withdrawal.id),
        {"amount": withdrawal.amount},
    )
    return withdrawal


async def list_for_user(user_id: PydanticObjectId) -> list[Withdrawal]:
    return await (
        Withdrawal.find(Withdrawal.user_id == user_id)
        .sort(-Withdrawal.created_at, -Withdrawal.id)
        .to_list()
    )


async def list_all(status: WithdrawalStatus | None = None, page: int = 1, limit: int = 50) -> dict[str, Any]:
    skip, limit = paginate(page, limit)
    query = Withdrawal.find(Withdrawal.status == status) if status else Withdrawal.find_all()
    total = await query.count()
    items = await query.sort(-Withdrawal.created_at, -Withdrawal.id).skip(skip).limit(limit).to_list()
    return {"items": items, "total": total, "page": max(1, page), "pages": page_count(total, limit)}


def withdrawal_to_dict(w: Withdrawal) -> dict[str, Any]:
    return {
        "id": str(w.id),
        "user_id": str(w.user_id),
        "amount": w.amount,
        "status": w.status,
        "bank_details": w.bank_details.model_dump(),
        "remarks": w.remarks,
        "approved_by": str(w.approved_by) if w.approved_by else None,
        "approval_date": w.approval_date.isoformat() if w.approval_date else None,
        "completion_date": w.completion_date.isoformat() if w.completion_date else None,
        "created_at": w.created_at.isoformat(),
    }
