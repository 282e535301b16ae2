"""Admin user management, revocation and earning reports."""

from datetime import datetime

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.audit_log import AuditLog
from app.models.transaction import Transaction
from app.models.user import User
from app.models.wallet import Wallet
from app.models.withdrawal import Withdrawal
from app.services import admin as admin_service
from app.services import wallet as wallet_service
from app.services import withdrawals as withdrawals_service

pytestmark = pytest.mark.asyncio


async def test_list_users_search_and_paging(make_user):
    await make_user(role="admin")
    alice = await make_user()
    await alice.set({User.name: "Alice Rao"})
    for _ in range(3):
        await make_user()

    everyone = await admin_service.list_users(page=1, limit=3)
    assert everyone["total"] == 4
    assert everyone["pages"] == 2
    assert len(everyone["items"]) == 3

    found = await admin_service.list_users("alice")
    assert [u.id for u in found["items"]] == [alice.id]
    # Search text is matched literally.
    assert (await admin_service.list_users(".*"))["total"] == 0


async def test_user_details(make_user):
    user = await make_user(earnings=2)
    await wallet_service.credit(user.id, 400)
    await withdrawals_service.request_withdrawal(user.id, 250)

    details = await admin_service.user_details(user.id)
    assert details["user"]["plan_active"] is True
    assert details["plan"]["id"] == str(user.plan_id)
    assert details["wallet"]["balance"] == 400
    assert [w["amount"] for w in details["withdrawals"]] == [250]

    with pytest.raises(NotFoundError):
        await admin_service.user_details(PydanticObjectId())


async def test_block_revokes_tokens_and_unblock_restores_access(client, make_user, auth_headers):
    admin = await make_user(role="admin")
    user = await make_user()
    old_headers = auth_headers(user)

    r = await client.put(f"/v1/admin/users/{user.id}/block", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["user"]["is_blocked"] is True
    assert (await client.get("/v1/auth/me", headers=old_headers)).status_code == 401
    user = await User.get(user.id)
    assert (await client.get("/v1/auth/me", headers=auth_headers(user))).status_code == 403

    r = await client.put(f"/v1/admin/users/{user.id}/unblock", headers=auth_headers(admin))
    assert r.json()["user"]["is_blocked"] is False
    user = await User.get(user.id)
    assert (await client.get("/v1/auth/me", headers=auth_headers(user))).status_code == 200
    events = [e.event_type for e in await AuditLog.find(AuditLog.entity_id == str(user.id)).to_list()]
    assert events == ["user_blocked", "user_unblocked"]


async def test_revoke_tokens(client, make_user, auth_headers):
    admin = await make_user(role="admin")
    user = await make_user()
    headers = auth_headers(user)
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 200

    r = await client.post(f"/v1/admin/users/{user.id}/revoke-tokens", headers=auth_headers(admin))
    assert r.status_code == 200
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 401
    assert (await User.get(user.id)).is_blocked is False


async def test_admin_cannot_block_or_delete_self(make_user):
    admin = await make_user(role="admin")
    with pytest.raises(BadRequestError):
        await admin_service.set_blocked(admin.id, admin.id, True)
    with pytest.raises(BadRequestError):
        await admin_service.delete_user(admin.id, admin.id)


async def test_delete_user_cascades(client, make_user, auth_headers):
    admin = await make_user(role="admin")
    user = await make_user()
    other = await make_user()
    await wallet_service.credit(user.id, 500)
    await wallet_service.credit(other.id, 50)
    await withdrawals_service.request_withdrawal(user.id, 300)

    r = await client.delete(f"/v1/admin/users/{user.id}", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["deleted"] == {"transactions": 1, "withdrawals": 1}

    assert await User.get(user.id) is None
    assert await Wallet.find(Wallet.user_id == user.id).count() == 0
    assert await Transaction.find(Transaction.user_id == user.id).count() == 0
    assert await Withdrawal.find(Withdrawal.user_id == user.id).count() == 0
    assert await wallet_service.current_balance(other.id) == 50

    log = await AuditLog.find_one(AuditLog.event_type == "user_deleted")
    assert log.metadata["balance"] == 500
    r = await client.delete(f"/v1/admin/users/{user.id}", headers=auth_headers(admin))
    assert r.status_code == 404


async def _txn(user, wallet, type_, amount, when):
    await Transaction(
        user_id=user.id,
        wallet_id=wallet.id,
        type=type_,
        amount=amount,
        status="completed",
        created_at=when,
    ).insert()


async def test_earning_reports_buckets(make_user):
    user = await make_user()
    wallet = await wallet_service.ensure_wallet(user.id)
    await _txn(user, wallet, "credit", 10, datetime(2026, 3, 2, 9))
    await _txn(user, wallet, "credit", 5, datetime(2026, 3, 2, 18))
    await _txn(user, wallet, "debit", 7, datetime(2026, 3, 4, 12))
    await _txn(user, wallet, "credit", 3, datetime(2026, 4, 1, 8))

    daily = await admin_service.earning_reports(period="daily")
    assert daily[0] == {"period": "2026-03-02", "earnings": 15, "withdrawals": 0, "transactions": 2}
    assert [row["period"] for row in daily] == ["2026-03-02", "2026-03-04", "2026-04-01"]

    weekly = await admin_service.earning_reports(period="weekly")
    assert weekly[0] == {"period": "2026-W10", "earnings": 15, "withdrawals": 7, "transactions": 3}

    monthly = await admin_service.earning_reports(
        start=datetime(2026, 3, 1), end=datetime(2026, 3, 31, 23, 59), period="monthly"
    )
    assert monthly == [{"period": "2026-03", "earnings": 15, "withdrawals": 7, "transactions": 3}]


async def test_reports_endpoint_requires_admin(client, make_user, auth_headers):
    user = await make_user()
    assert (await client.get("/v1/admin/reports", headers=auth_headers(user))).status_code == 403
    admin = await make_user(role="admin")
    r = await client.get("/v1/admin/reports?period=monthly", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json() == {"period": "monthly", "count": 0, "report": []}
