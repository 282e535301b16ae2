"""Ledger reconciliation sweep.

Repairs the gaps a crash can leave between the steps of a balance mutation
and reports anything it cannot explain. Balances are never rewritten here;
anomalies go to the audit log for a human to look at.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from beanie.operators import ElemMatch, In

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import InsufficientBalanceError, NotFoundError
from app.core.logging import get_logger
from app.models.transaction import Transaction
from app.models.wallet import Wallet
from app.models.withdrawal import Withdrawal
from app.services import wallet as wallet_service
from app.services import withdrawals as withdrawals_service

log = get_logger(__name__)


async def materialize_stale_entries(cutoff: datetime, limit: int) -> int:
    """Write Transactions for wallet entries left behind before cutoff."""
    wallets = await Wallet.find(
        ElemMatch(Wallet.pending_entries, {"created_at": {"$lt": cutoff}})
    ).limit(limit).to_list()
    written = 0
    for wallet in wallets:
        written += await wallet_service.materialize_pending(wallet, older_than=cutoff)
    return written


async def resume_withdrawal_debits(cutoff: datetime, limit: int) -> dict[str, int]:
    """Finish approvals whose debit never got marked; undo the ones that can no longer be paid."""
    counts = {"resumed": 0, "reverted": 0, "anomalies": 0}
    stuck = await Withdrawal.find(
        In(Withdrawal.status, ["approved", "completed"]),
        Withdrawal.debited == False,  # noqa: E712
        Withdrawal.debit_transaction_id != None,  # noqa: E711
        Withdrawal.approval_date < cutoff,
    ).limit(limit).to_list()
    for w in stuck:
        try:
            await wallet_service.debit(
                w.user_id,
                w.amount,
                withdrawals_service.debit_description(w),
                reference_id=str(w.id),
                transaction_id=w.debit_transaction_id,
            )
        except (InsufficientBalanceError, NotFoundError) as e:
            if w.status == "approved" and await withdrawals_service.release_claim(w):
                counts["reverted"] += 1
                log.warning("withdrawal_claim_reverted", withdrawal_id=str(w.id), reason=e.code)
                await log_event(None, "withdrawal_reverted", "withdrawal", str(w.id), {"reason": e.code, "amount": w.amount})
            else:
                counts["anomalies"] += 1
                log.error("withdrawal_debit_unrecoverable", withdrawal_id=str(w.id), status=w.status, reason=e.code)
                await log_event(
                    None,
                    "withdrawal_anomaly",
                    "withdrawal",
                    str(w.id),
                    {"reason": e.code, "status": w.status, "amount": w.amount, **e.details},
                )
            continue
        await withdrawals_service.mark_debited(w)
        counts["resumed"] += 1
        log.info("withdrawal_debit_resumed", withdrawal_id=str(w.id), amount=w.amount)
    return counts


async def _logged_total(user_id: PydanticObjectId, entry_type: str) -> int:
    total = await Transaction.find(
        Transaction.user_id == user_id,
        Transaction.type == entry_type,
        Transaction.status == "completed",
    ).sum(Transaction.amount)
    return int(total or 0)


async def audit_wallet(wallet: Wallet) -> list[str]:
    """Return the invariant violations found on one wallet (empty when consistent)."""
    issues = []
    if wallet.balance != wallet.total_earned - wallet.total_withdrawn:
        issues.append("balance_mismatch")
    if wallet.balance < 0:
        issues.append("negative_balance")
    pending_credit = sum(e.amount for e in wallet.pending_entries if e.type == "credit")
    pending_debit = sum(e.amount for e in wallet.pending_entries if e.type == "debit")
    if await _logged_total(wallet.user_id, "credit") + pending_credit != wallet.total_earned:
        issues.append("credit_log_mismatch")
    if await _logged_total(wallet.user_id, "debit") + pending_debit != wallet.total_withdrawn:
        issues.append("debit_log_mismatch")
    return issues


async def audit_wallets() -> tuple[int, int]:
    checked = anomalies = 0
    async for wallet in Wallet.find_all():
        checked += 1
        issues = await audit_wallet(wallet)
        if not issues:
            continue
        anomalies += 1
        meta = {
            "issues": issues,
            "user_id": str(wallet.user_id),
            "balance": wallet.balance,
            "total_earned": wallet.total_earned,
            "total_withdrawn": wallet.total_withdrawn,
        }
        log.error("wallet_anomaly", wallet_id=str(wallet.id), **meta)
        await log_event(None, "wallet_anomaly", "wallet", str(wallet.id), meta)
    return checked, anomalies


async def reconcile(now: datetime | None = None) -> dict[str, Any]:
    settings = get_settings()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=settings.reconcile_grace_seconds)
    limit = settings.reconcile_batch_size

    materialized = await materialize_stale_entries(cutoff, limit)
    withdrawals = await resume_withdrawal_debits(cutoff, limit)
    checked, anomalies = await audit_wallets()
    result = {
        "checked": checked,
        "materialized": materialized,
        "resumed": withdrawals["resumed"],
        "reverted": withdrawals["reverted"],
        "anomalies": anomalies + withdrawals["anomalies"],
    }
    log.info("reconcile_done", **result)
    return result
