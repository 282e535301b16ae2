"""Wallet ledger: atomic balance mutations paired with the append-only transaction log.

Each mutation is one conditional find_one_and_update on the wallet document.
That same update pushes the new transaction id and a PendingEntry carrying the
full transaction payload, so the balance never moves without a durable record
of why. The Transaction document is then inserted under the pre-allocated id
and the entry is pulled. If the process dies in between, the reconciliation
sweep (app.services.reconciliation) finishes the job; inserts are keyed by
_id so replaying an entry is harmless.
"""

from datetime import datetime, timedelta
from typing import Any, Literal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import ElemMatch, Inc, Pull, Push, Set
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InsufficientBalanceError, NotFoundError
from app.core.logging import get_logger
from app.core.pagination import page_count, paginate
from app.models.transaction import Transaction
from app.models.user import User
from app.models.wallet import PendingEntry, Wallet

log = get_logger(__name__)


async def ensure_wallet(user_id: PydanticObjectId) -> Wallet:
    """Return the user's wallet, creating an empty one on first access.

    Concurrent first access is settled by the unique index on user_id: the
    loser of the insert race re-reads the winner's wallet.
    """
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    if wallet:
        return wallet
    if not await User.get(user_id):
        raise NotFoundError("User not found")
    try:
        wallet = Wallet(user_id=user_id)
        await wallet.insert()
        log.info("wallet_created", user_id=str(user_id), wallet_id=str(wallet.id))
        return wallet
    except DuplicateKeyError:
        wallet = await Wallet.find_one(Wallet.user_id == user_id)
        if wallet is None:
            raise
        return wallet


async def current_balance(user_id: PydanticObjectId) -> int:
    """Read-only balance (0 when no wallet exists yet)."""
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    return wallet.balance if wallet else 0


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise BadRequestError("Amount must be a positive integer", details={"amount": amount})


def _new_entry(
    entry_type: Literal["credit", "debit"],
    amount: int,
    description: str,
    reference_id: str | None,
    transaction_id: PydanticObjectId | None = None,
) -> PendingEntry:
    return PendingEntry(
        transaction_id=transaction_id or PydanticObjectId(),
        type=entry_type,
        amount=amount,
        description=description,
        reference_id=reference_id,
    )


async def _materialize(wallet: Wallet, entry: PendingEntry) -> Transaction:
    """Write the Transaction for an applied entry, then drop the entry from the wallet."""
    txn = Transaction(
        id=entry.transaction_id,
        user_id=wallet.user_id,
        wallet_id=wallet.id,
        type=entry.type,
        amount=entry.amount,
        description=entry.description,
        reference_id=entry.reference_id,
        status="completed",
        created_at=entry.created_at,
    )
    try:
        await txn.insert()
    except DuplicateKeyError:
        txn = await Transaction.get(entry.transaction_id)
    await Wallet.find_one(Wallet.id == wallet.id).update(
        Pull({Wallet.pending_entries: {"transaction_id": entry.transaction_id}})
    )
    return txn


async def materialize_pending(wallet: Wallet, older_than: datetime | None = None) -> int:
    """Materialise the wallet's leftover entries; returns how many were written."""
    written = 0
    for entry in list(wallet.pending_entries):
        if older_than is not None and entry.created_at >= older_than:
            continue
        await _materialize(wallet, entry)
        written += 1
    if written:
        log.warning("wallet_entries_materialized", wallet_id=str(wallet.id), count=written)
    return written


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    description: str = "",
    reference_id: str | None = None,
) -> tuple[Wallet, Transaction]:
    """Add amount to balance and total_earned; returns (wallet_after, transaction)."""
    _check_amount(amount)
    await ensure_wallet(user_id)
    entry = _new_entry("credit", amount, description, reference_id)
    wallet = await Wallet.find_one(Wallet.user_id == user_id).update(
        Inc({Wallet.balance: amount, Wallet.total_earned: amount}),
        Push({Wallet.transactions: entry.transaction_id, Wallet.pending_entries: entry}),
        Set({Wallet.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if wallet is None:
        raise NotFoundError("Wallet not found")
    txn = await _materialize(wallet, entry)
    log.info(
        "wallet_credited",
        user_id=str(user_id),
        amount=amount,
        balance=wallet.balance,
        transaction_id=str(txn.id),
        reference_id=reference_id,
    )
    return wallet, txn


async def debit(
    user_id: PydanticObjectId,
    amount: int,
    description: str = "",
    reference_id: str | None = None,
    transaction_id: PydanticObjectId | None = None,
) -> tuple[Wallet, Transaction]:
    """Subtract amount from balance (add to total_withdrawn) if balance covers it.

    The sufficiency check lives in the update filter, so it is evaluated by the
    store at write time. Passing transaction_id makes the call idempotent: a
    wallet that already lists that id is not debited again.
    """
    _check_amount(amount)
    entry = _new_entry("debit", amount, description, reference_id, transaction_id)
    wallet = await Wallet.find_one(
        Wallet.user_id == user_id,
        Wallet.balance >= amount,
        Wallet.transactions != entry.transaction_id,
    ).update(
        Inc({Wallet.balance: -amount, Wallet.total_withdrawn: amount}),
        Push({Wallet.transactions: entry.transaction_id, Wallet.pending_entries: entry}),
        Set({Wallet.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if wallet is not None:
        txn = await _materialize(wallet, entry)
        log.info(
            "wallet_debited",
            user_id=str(user_id),
            amount=amount,
            balance=wallet.balance,
            transaction_id=str(txn.id),
            reference_id=reference_id,
        )
        return wallet, txn

    current = await Wallet.find_one(Wallet.user_id == user_id)
    if current is None:
        raise NotFoundError("User wallet not found")
    if entry.transaction_id in current.transactions:
        log.info("wallet_debit_already_applied", user_id=str(user_id), transaction_id=str(entry.transaction_id))
        return current, await _applied_transaction(current, entry.transaction_id)
    log.warning("wallet_debit_rejected", user_id=str(user_id), amount=amount, balance=current.balance)
    raise InsufficientBalanceError(available=current.balance, required=amount)


async def _applied_transaction(wallet: Wallet, transaction_id: PydanticObjectId) -> Transaction:
    txn = await Transaction.get(transaction_id)
    if txn is not None:
        return txn
    for entry in wallet.pending_entries:
        if entry.transaction_id == transaction_id:
            return await _materialize(wallet, entry)
    raise NotFoundError("Transaction not found")


async def reward_recorded(user_id: PydanticObjectId, reference_id: str) -> bool:
    """True once a mutation carrying reference_id has been applied, materialised or not."""
    if await Transaction.find_one(Transaction.user_id == user_id, Transaction.reference_id == reference_id):
        return True
    wallet = await Wallet.find_one(
        Wallet.user_id == user_id,
        ElemMatch(Wallet.pending_entries, {"reference_id": reference_id}),
    )
    return wallet is not None


async def get_balance(user_id: PydanticObjectId) -> dict[str, int]:
    wallet = await ensure_wallet(user_id)
    return {
        "balance": wallet.balance,
        "total_earned": wallet.total_earned,
        "total_withdrawn": wallet.total_withdrawn,
    }


def transaction_to_dict(txn: Transaction) -> dict[str, Any]:
    return {
        "id": str(txn.id),
        "type": txn.type,
        "amount": txn.amount,
        "description": txn.description,
        "reference_id": txn.reference_id,
        "status": txn.status,
        "created_at": txn.created_at.isoformat(),
    }


async def get_history(user_id: PydanticObjectId, page: int = 1, limit: int | None = None) -> dict[str, Any]:
    """Transactions newest first, page-numbered."""
    skip, limit = paginate(page, limit or get_settings().default_history_limit)
    total = await Transaction.find(Transaction.user_id == user_id).count()
    items = (
        await Transaction.find(Transaction.user_id == user_id)
        .sort(-Transaction.created_at, -Transaction.id)
        .skip(skip)
        .limit(limit)
        .to_list()
    )
    return {
        "transactions": [transaction_to_dict(t) for t in items],
        "count": len(items),
        "total": total,
        "page": max(1, page),
        "pages": page_count(total, limit),
    }


async def get_wallet(user_id: PydanticObjectId, recent: int = 20) -> dict[str, Any]:
    wallet = await ensure_wallet(user_id)
    history = await get_history(user_id, page=1, limit=recent)
    return {
        "id": str(wallet.id),
        "balance": wallet.balance,
        "total_earned": wallet.total_earned,
        "total_withdrawn": wallet.total_withdrawn,
        "transactions": history["transactions"],
        "created_at": wallet.created_at.isoformat(),
    }


async def _credited_since(user_id: PydanticObjectId, since: datetime) -> int:
    total = await Transaction.find(
        Transaction.user_id == user_id,
        Transaction.type == "credit",
        Transaction.status == "completed",
        Transaction.created_at >= since,
    ).sum(Transaction.amount)
    return int(total or 0)


async def earnings_stats(user_id: PydanticObjectId, now: datetime | None = None) -> dict[str, int]:
    """Completed credits for today, the last 7 days, and the current month (UTC)."""
    now = now or datetime.utcnow()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "today": await _credited_since(user_id, today_start),
        "week": await _credited_since(user_id, today_start - timedelta(days=7)),
        "month": await _credited_since(user_id, today_start.replace(day=1)),
    }
