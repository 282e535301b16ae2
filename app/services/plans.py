"""Plan catalog lookups and plan assignment (purchase or demo)."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.models.plan import Plan
from app.models.user import User
from app.services import wallet as wallet_service

log = get_logger(__name__)

DEMO_PLAN_DEFAULTS = {
    "price": 0,
    "captcha_limit": 10,
    "validity_days": 1,
    "earnings_per_captcha": 0,
    "description": "Demo plan - access to captchas without earning rewards",
}


async def list_active_plans() -> list[Plan]:
    return await Plan.find(Plan.is_active == True).sort(+Plan.price).to_list()  # noqa: E712


async def get_plan(plan_id: PydanticObjectId) -> Plan:
    plan = await Plan.get(plan_id)
    if not plan:
        raise NotFoundError("Plan not found")
    return plan


async def create_plan(
    name: str,
    price: int,
    validity_days: int,
    earnings_per_captcha: int,
    captcha_limit: int = 0,
    description: str = "",
    currency: str | None = None,
) -> Plan:
    plan = Plan(
        name=name.strip(),
        price=price,
        currency=currency or get_settings().payment_currency,
        captcha_limit=captcha_limit,
        validity_days=validity_days,
        earnings_per_captcha=earnings_per_captcha,
        description=description,
    )
    try:
        await plan.insert()
    except DuplicateKeyError as e:
        raise BadRequestError(f"Plan '{plan.name}' already exists") from e
    log.info("plan_created", plan_id=str(plan.id), name=plan.name)
    return plan


def has_active_plan(user: User, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    return user.plan_id is not None and user.plan_expiry is not None and user.plan_expiry > now


async def active_plan(user: User, now: datetime | None = None) -> Plan | None:
    """The user's plan if assigned, unexpired and still present in the catalog."""
    if not has_active_plan(user, now):
        return None
    return await Plan.get(user.plan_id)


async def assign_plan(user_id: PydanticObjectId, plan: Plan) -> User:
    """Grant plan from now for its validity window; replaces any current plan."""
    now = datetime.utcnow()
    user = await User.find_one(User.id == user_id).update(
        Set({
            User.plan_id: plan.id,
            User.plan_expiry: now + timedelta(days=plan.validity_days),
            User.updated_at: now,
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if user is None:
        raise NotFoundError("User not found")
    log.info("plan_assigned", user_id=str(user_id), plan_id=str(plan.id), plan_expiry=user.plan_expiry.isoformat())
    return user


async def get_or_create_demo_plan() -> Plan:
    name = get_settings().demo_plan_name
    plan = await Plan.find_one(Plan.name == name)
    if plan is None:
        try:
            plan = Plan(name=name, **DEMO_PLAN_DEFAULTS)
            await plan.insert()
            log.info("demo_plan_created", plan_id=str(plan.id))
        except DuplicateKeyError:
            plan = await Plan.find_one(Plan.name == name)
            if plan is None:
                raise
    elif not plan.is_active:
        await plan.set({Plan.is_active: True, Plan.updated_at: datetime.utcnow()})
    return plan


async def select_demo_plan(user_id: PydanticObjectId) -> tuple[User, Plan]:
    """Assign the free demo plan and make sure the user has a wallet."""
    plan = await get_or_create_demo_plan()
    user = await assign_plan(user_id, plan)
    await wallet_service.ensure_wallet(user_id)
    return user, plan
