"""Plan catalog, demo plan and Razorpay purchase flow."""

import hashlib
import hmac
from datetime import datetime, timedelta

import pytest

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InvalidStateError, NotFoundError
from app.models.audit_log import AuditLog
from app.models.payment import Payment
from app.models.plan import Plan
from app.models.wallet import Wallet
from app.services import payments as payments_service
from app.services import plans as plans_service

pytestmark = pytest.mark.asyncio

SECRET = "rzp_test_secret"


def _sign(order_id: str, payment_id: str) -> str:
    return hmac.new(SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def razorpay_keys(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "razorpay_key_id", "rzp_test_key")
    monkeypatch.setattr(settings, "razorpay_key_secret", SECRET)


class FakeOrders:
    def __init__(self):
        self.created = []

    def create(self, data):
        self.created.append(data)
        return {"id": f"order_{len(self.created)}", "amount": data["amount"], "currency": data["currency"]}


class FakeClient:
    def __init__(self):
        self.order = FakeOrders()


async def test_catalog_lists_active_plans_by_price(db):
    await plans_service.create_plan("Gold", 499, 30, 5)
    await plans_service.create_plan("Silver", 199, 30, 2)
    hidden = await plans_service.create_plan("Old", 99, 30, 1)
    await hidden.set({Plan.is_active: False})
    plans = await plans_service.list_active_plans()
    assert [p.name for p in plans] == ["Silver", "Gold"]
    with pytest.raises(BadRequestError):
        await plans_service.create_plan("Gold", 1, 1, 1)


async def test_select_demo_plan_is_idempotent(make_user):
    user = await make_user()
    user1, plan1 = await plans_service.select_demo_plan(user.id)
    user2, plan2 = await plans_service.select_demo_plan(user.id)
    assert plan1.id == plan2.id
    assert plan1.earnings_per_captcha == 0
    assert await Plan.find(Plan.name == get_settings().demo_plan_name).count() == 1
    assert user2.plan_id == plan1.id
    assert user2.plan_expiry > datetime.utcnow() + timedelta(hours=23)
    assert plans_service.has_active_plan(user2)
    assert await Wallet.find(Wallet.user_id == user.id).count() == 1


async def test_create_order_records_payment(make_user, razorpay_keys, monkeypatch):
    client = FakeClient()
    monkeypatch.setattr(payments_service, "_razorpay_client", lambda: client)
    user = await make_user()
    plan = await plans_service.create_plan("Gold", 499, 30, 5)

    out = await payments_service.create_order(user.id, plan.id)
    assert out["order_id"] == "order_1"
    assert out["amount"] == 49900
    assert out["key_id"] == "rzp_test_key"
    payment = await Payment.find_one(Payment.razorpay_order_id == "order_1")
    assert payment.status == "initiated"
    assert payment.plan_id == plan.id


async def test_order_for_free_plan_rejected(make_user, razorpay_keys):
    user = await make_user()
    plan = await plans_service.get_or_create_demo_plan()
    with pytest.raises(BadRequestError):
        await payments_service.create_order(user.id, plan.id)


async def _initiated_payment(user, plan, order_id="order_abc") -> Payment:
    payment = Payment(user_id=user.id, plan_id=plan.id, amount=plan.price, currency="INR", razorpay_order_id=order_id)
    await payment.insert()
    return payment


async def test_verify_assigns_plan_once(make_user, razorpay_keys):
    user = await make_user()
    plan = await plans_service.create_plan("Gold", 499, 30, 5)
    await _initiated_payment(user, plan)

    updated, assigned = await payments_service.verify_payment(user.id, "order_abc", "pay_1", _sign("order_abc", "pay_1"))
    assert assigned.id == plan.id
    assert updated.plan_id == plan.id
    payment = await Payment.find_one(Payment.razorpay_order_id == "order_abc")
    assert payment.status == "completed"
    assert payment.razorpay_payment_id == "pay_1"

    again, _ = await payments_service.verify_payment(user.id, "order_abc", "pay_1", _sign("order_abc", "pay_1"))
    assert again.plan_expiry == updated.plan_expiry
    assert await AuditLog.find(AuditLog.event_type == "payment_completed").count() == 1


async def test_verify_rejects_bad_signature(make_user, razorpay_keys):
    user = await make_user()
    plan = await plans_service.create_plan("Gold", 499, 30, 5)
    await _initiated_payment(user, plan)
    with pytest.raises(BadRequestError):
        await payments_service.verify_payment(user.id, "order_abc", "pay_1", "deadbeef")
    assert (await Payment.find_one(Payment.razorpay_order_id == "order_abc")).status == "initiated"


async def test_verify_unknown_or_failed_order(make_user, razorpay_keys):
    user = await make_user()
    plan = await plans_service.create_plan("Gold", 499, 30, 5)
    with pytest.raises(NotFoundError):
        await payments_service.verify_payment(user.id, "order_x", "pay_1", _sign("order_x", "pay_1"))
    payment = await _initiated_payment(user, plan, order_id="order_f")
    await payment.set({Payment.status: "failed"})
    with pytest.raises(InvalidStateError):
        await payments_service.verify_payment(user.id, "order_f", "pay_1", _sign("order_f", "pay_1"))
