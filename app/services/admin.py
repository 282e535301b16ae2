"""Admin dashboard figures, user management and manual wallet adjustments."""

import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Literal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Or, RegEx, Set

from app.core.audit import log_event
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.core.pagination import page_count, paginate
from app.models.payment import Payment
from app.models.plan import Plan
from app.models.transaction import Transaction
from app.models.user import User
from app.models.wallet import Wallet
from app.models.withdrawal import Withdrawal
from app.services import plans as plans_service
from app.services import users as users_service
from app.services import wallet as wallet_service
from app.services import withdrawals as withdrawals_service

log = get_logger(__name__)

WITHDRAWAL_STATUSES = ("pending", "approved", "rejected", "completed")


async def dashboard_stats() -> dict[str, Any]:
    total_earned = await Wallet.find_all().sum(Wallet.total_earned)
    total_withdrawn = await Wallet.find_all().sum(Wallet.total_withdrawn)
    revenue = await Payment.find(Payment.status == "completed").sum(Payment.amount)
    return {
        "users": {
            "total": await User.find(User.role == "user").count(),
            "blocked": await User.find(User.role == "user", User.is_blocked == True).count(),  # noqa: E712
            "with_plan": await User.find(User.role == "user", User.plan_id != None).count(),  # noqa: E711
        },
        "wallets": {
            "total_earned": int(total_earned or 0),
            "total_withdrawn": int(total_withdrawn or 0),
            "transactions": await Transaction.count(),
        },
        "withdrawals": {
            status: await Withdrawal.find(Withdrawal.status == status).count()
            for status in WITHDRAWAL_STATUSES
        },
        "payments": {
            "completed": await Payment.find(Payment.status == "completed").count(),
            "revenue": int(revenue or 0),
        },
    }


async def add_funds(
    admin_id: PydanticObjectId,
    user_id: PydanticObjectId,
    amount: int,
    description: str | None = None,
) -> tuple[Wallet, Transaction]:
    """Credit a user's wallet by hand; goes through the same ledger path as rewards."""
    await users_service.get_user(user_id)
    wallet, txn = await wallet_service.credit(user_id, amount, description or "Admin added funds")
    log.info("admin_funds_added", admin_id=str(admin_id), user_id=str(user_id), amount=amount)
    await log_event(
        str(admin_id),
        "funds_added",
        "wallet",
        str(wallet.id),
        {"user_id": str(user_id), "amount": amount, "transaction_id": str(txn.id)},
    )
    return wallet, txn


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "plan_id": str(user.plan_id) if user.plan_id else None,
        "plan_expiry": user.plan_expiry.isoformat() if user.plan_expiry else None,
        "plan_active": plans_service.has_active_plan(user),
        "total_captchas_solved": user.total_captchas_solved,
        "total_earnings": user.total_earnings,
        "is_blocked": user.is_blocked,
        "created_at": user.created_at.isoformat(),
    }


async def list_users(search: str | None = None, page: int = 1, limit: int = 50) -> dict[str, Any]:
    """Regular users, newest first; search matches name or email, case-insensitive."""
    skip, limit = paginate(page, limit)
    conditions = [User.role == "user"]
    if search and search.strip():
        pattern = re.escape(search.strip())
        conditions.append(Or(RegEx(User.name, pattern, "i"), RegEx(User.email, pattern, "i")))
    query = User.find(*conditions)
    total = await query.count()
    users = await query.sort(-User.created_at, -User.id).skip(skip).limit(limit).to_list()
    return {"items": users, "total": total, "page": max(1, page), "pages": page_count(total, limit)}


async def user_details(user_id: PydanticObjectId) -> dict[str, Any]:
    user = await users_service.get_user(user_id)
    plan = await Plan.get(user.plan_id) if user.plan_id else None
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    withdrawals = await withdrawals_service.list_for_user(user_id)
    return {
        "user": user_to_dict(user),
        "plan": {"id": str(plan.id), "name": plan.name} if plan else None,
        "wallet": {
            "balance": wallet.balance,
            "total_earned": wallet.total_earned,
            "total_withdrawn": wallet.total_withdrawn,
        } if wallet else None,
        "withdrawals": [withdrawals_service.withdrawal_to_dict(w) for w in withdrawals],
    }


async def _update_user(user_id: PydanticObjectId, *updates) -> User:
    user = await User.find_one(User.id == user_id).update(
        *updates,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if user is None:
        raise NotFoundError("User not found")
    return user


def _not_self(admin_id: PydanticObjectId, user_id: PydanticObjectId, action: str) -> None:
    if admin_id == user_id:
        raise BadRequestError(f"Admins cannot {action} their own account")


async def set_blocked(admin_id: PydanticObjectId, user_id: PydanticObjectId, blocked: bool) -> User:
    """Block or unblock a user. Blocking also revokes every token issued so far."""
    _not_self(admin_id, user_id, "block")
    updates = [Set({User.is_blocked: blocked, User.updated_at: datetime.utcnow()})]
    if blocked:
        updates.append(Inc({User.token_version: 1}))
    user = await _update_user(user_id, *updates)
    event = "user_blocked" if blocked else "user_unblocked"
    log.info(event, admin_id=str(admin_id), user_id=str(user_id))
    await log_event(str(admin_id), event, "user", str(user_id), {"token_version": user.token_version})
    return user


async def revoke_tokens(admin_id: PydanticObjectId, user_id: PydanticObjectId) -> User:
    """Invalidate all outstanding bearer tokens for the user."""
    user = await _update_user(
        user_id,
        Inc({User.token_version: 1}),
        Set({User.updated_at: datetime.utcnow()}),
    )
    log.info("user_tokens_revoked", admin_id=str(admin_id), user_id=str(user_id))
    await log_event(str(admin_id), "tokens_revoked", "user", str(user_id), {"token_version": user.token_version})
    return user


async def delete_user(admin_id: PydanticObjectId, user_id: PydanticObjectId) -> dict[str, int]:
    """Delete a user with their wallet, transactions and withdrawals.

    The audit entry keeps the wallet totals as they were at deletion.
    """
    _not_self(admin_id, user_id, "delete")
    user = await users_service.get_user(user_id)
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    transactions = await Transaction.find(Transaction.user_id == user_id).delete()
    withdrawals = await Withdrawal.find(Withdrawal.user_id == user_id).delete()
    if wallet:
        await wallet.delete()
    await user.delete()
    counts = {
        "transactions": transactions.deleted_count if transactions else 0,
        "withdrawals": withdrawals.deleted_count if withdrawals else 0,
    }
    log.info("user_deleted", admin_id=str(admin_id), user_id=str(user_id), **counts)
    await log_event(
        str(admin_id),
        "user_deleted",
        "user",
        str(user_id),
        {
            "email": user.email,
            "balance": wallet.balance if wallet else 0,
            "total_earned": wallet.total_earned if wallet else 0,
            "total_withdrawn": wallet.total_withdrawn if wallet else 0,
            **counts,
        },
    )
    return counts


def _naive_utc(moment: datetime | None) -> datetime | None:
    """Stored timestamps are naive UTC."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _period_key(moment: datetime, period: str) -> str:
    if period == "monthly":
        return moment.strftime("%Y-%m")
    if period == "weekly":
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    return moment.strftime("%Y-%m-%d")


async def earning_reports(
    start: datetime | None = None,
    end: datetime | None = None,
    period: Literal["daily", "weekly", "monthly"] = "daily",
) -> list[dict[str, Any]]:
    """Completed credits and debits bucketed by day, ISO week or month, oldest bucket first."""
    start, end = _naive_utc(start), _naive_utc(end)
    conditions = [Transaction.status == "completed"]
    if start:
        conditions.append(Transaction.created_at >= start)
    if end:
        conditions.append(Transaction.created_at <= end)
    buckets: dict[str, dict[str, int]] = defaultdict(lambda: {"earnings": 0, "withdrawals": 0, "transactions": 0})
    async for txn in Transaction.find(*conditions):
        bucket = buckets[_period_key(txn.created_at, period)]
        bucket["earnings" if txn.type == "credit" else "withdrawals"] += txn.amount
        bucket["transactions"] += 1
    return [{"period": key, **buckets[key]} for key in sorted(buckets)]
