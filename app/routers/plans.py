from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_current_user, require_admin
from app.models.plan import Plan
from app.models.user import User
from app.services import payments as payments_service
from app.services import plans as plans_service

router = APIRouter()


class CreatePlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=80)
    price: int = Field(ge=0)
    validity_days: int = Field(ge=1, alias="validityDays")
    earnings_per_captcha: int = Field(ge=0, alias="earningsPerCaptcha")
    captcha_limit: int = Field(default=0, ge=0, alias="captchaLimit")
    description: str = ""
    currency: str | None = None


class InitializePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: PydanticObjectId = Field(alias="planId")


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    razorpay_order_id: str = Field(alias="razorpayOrderId", min_length=1)
    razorpay_payment_id: str = Field(alias="razorpayPaymentId", min_length=1)
    razorpay_signature: str = Field(alias="razorpaySignature", min_length=1)


def plan_to_dict(plan: Plan) -> dict:
    return {
        "id": str(plan.id),
        "name": plan.name,
        "price": plan.price,
        "currency": plan.currency,
        "captcha_limit": plan.captcha_limit,
        "validity_days": plan.validity_days,
        "earnings_per_captcha": plan.earnings_per_captcha,
        "description": plan.description,
        "is_active": plan.is_active,
    }


def _plan_status(user: User, plan: Plan) -> dict:
    return {
        "plan": plan_to_dict(plan),
        "plan_expiry": user.plan_expiry.isoformat() if user.plan_expiry else None,
    }


@router.get("")
async def plans_list():
    plans = await plans_service.list_active_plans()
    return {"count": len(plans), "plans": [plan_to_dict(p) for p in plans]}


@router.post("/select-demo")
async def plans_select_demo(user: User = Depends(get_current_user)):
    """Assign the free demo plan (no payouts) to the current user."""
    user, plan = await plans_service.select_demo_plan(user.id)
    return {"message": "Demo plan activated", **_plan_status(user, plan)}


@router.post("/payment/initialize")
async def plans_payment_initialize(body: InitializePaymentRequest, user: User = Depends(get_current_user)):
    """Create a Razorpay order for the plan; amount is in paise."""
    return await payments_service.create_order(user.id, body.plan_id)


@router.post("/payment/verify")
async def plans_payment_verify(body: VerifyPaymentRequest, user: User = Depends(get_current_user)):
    """Verify checkout signature and activate the purchased plan."""
    user, plan = await payments_service.verify_payment(
        user.id, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature
    )
    return {"success": True, "message": "Payment verified and plan activated", **_plan_status(user, plan)}


@router.get("/{plan_id}")
async def plans_get(plan_id: PydanticObjectId):
    return plan_to_dict(await plans_service.get_plan(plan_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def plans_create(body: CreatePlanRequest, admin: User = Depends(require_admin)):
    """Admin: add a plan to the catalog."""
    plan = await plans_service.create_plan(
        name=body.name,
        price=body.price,
        validity_days=body.validity_days,
        earnings_per_captcha=body.earnings_per_captcha,
        captcha_limit=body.captcha_limit,
        description=body.description,
        currency=body.currency,
    )
    return plan_to_dict(plan)
