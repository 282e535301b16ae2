from fastapi import APIRouter, Depends

from app.deps import get_current_user
from app.models.user import User
from app.services import plans as plans_service

router = APIRouter()


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user and plan status. Requires bearer token."""
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
    }
