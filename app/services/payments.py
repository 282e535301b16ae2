"""Razorpay plan purchase: order creation and signature-verified plan assignment."""

import time

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InvalidStateError, NotFoundError
from app.core.logging import get_logger
from app.core.security import verify_razorpay_payment
from app.models.payment import Payment
from app.models.plan import Plan
from app.models.user import User
from app.services import plans as plans_service
from app.services import users as users_service

log = get_logger(__name__)


def _razorpay_client():
    import razorpay
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


async def create_order(user_id: PydanticObjectId, plan_id: PydanticObjectId) -> dict:
    """Create Razorpay order for the plan price; return order details for checkout."""
    plan = await plans_service.get_plan(plan_id)
    if plan.price <= 0:
        raise BadRequestError("Invalid plan price for payment initialization")
    client = _razorpay_client()
    receipt = f"rcpt_{str(plan.id)[-6:]}_{str(int(time.time()))[-5:]}"
    order = client.order.create({
        "amount": plan.price * 100,  # paise
        "currency": plan.currency,
        "receipt": receipt,
        "notes": {"plan_id": str(plan.id), "user_id": str(user_id)},
    })
    payment = Payment(
        user_id=user_id,
        plan_id=plan.id,
        amount=plan.price,
        currency=plan.currency,
        razorpay_order_id=order["id"],
    )
    await payment.insert()
    log.info("payment_order_created", user_id=str(user_id), plan_id=str(plan.id), order_id=order["id"])
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "key_id": get_settings().razorpay_key_id,
        "payment_id": str(payment.id),
    }


async def verify_payment(
    user_id: PydanticObjectId,
    order_id: str,
    payment_id: str,
    signature: str,
) -> tuple[User, Plan]:
    """Check the checkout signature, complete the payment once, then assign its plan."""
    settings = get_settings()
    if not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    if not verify_razorpay_payment(order_id, payment_id, signature, settings.razorpay_key_secret):
        raise BadRequestError("Invalid payment signature")

    payment = await Payment.find_one(
        Payment.razorpay_order_id == order_id,
        Payment.user_id == user_id,
        Payment.status == "initiated",
    ).update(
        Set({
            Payment.razorpay_payment_id: payment_id,
            Payment.razorpay_signature: signature,
            Payment.status: "completed",
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if payment is None:
        existing = await Payment.find_one(
            Payment.razorpay_order_id == order_id,
            Payment.user_id == user_id,
        )
        if existing is None:
            raise NotFoundError("Payment record not found")
        if existing.status != "completed":
            raise InvalidStateError("Payment is not awaiting verification", existing.status)
        # Already verified: report the current assignment without extending it.
        return await users_service.get_user(user_id), await plans_service.get_plan(existing.plan_id)

    plan = await plans_service.get_plan(payment.plan_id)
    user = await plans_service.assign_plan(user_id, plan)
    await log_event(
        str(user_id),
        "payment_completed",
        "payment",
        str(payment.id),
        {"order_id": order_id, "razorpay_payment_id": payment_id, "amount": payment.amount, "plan_id": str(plan.id)},
    )
    return user, plan
