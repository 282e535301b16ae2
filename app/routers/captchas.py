from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_current_user
from app.models.user import User
from app.services import challenges as challenges_service

router = APIRouter()


class SubmitCaptchaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str = Field(min_length=1, max_length=64)
    captcha_id: str = Field(alias="captchaId", min_length=1)


@router.get("/random")
async def captcha_random(user: User = Depends(get_current_user)):
    """Issue a captcha; captchaId is the signed proof to send back with the answer."""
    out = await challenges_service.issue(user)
    return {"image": out["image"], "captchaId": out["captcha_id"], "difficulty": out["difficulty"]}


@router.post("/submit")
async def captcha_submit(body: SubmitCaptchaRequest, user: User = Depends(get_current_user)):
    """Check an answer; correct answers credit the plan's payout to the wallet."""
    out = await challenges_service.verify(user, body.answer, body.captcha_id)
    return {
        "success": out["success"],
        "message": "Correct answer! Earnings credited" if out["success"] else "Incorrect answer",
        "earned": out["earned"],
        "totalBalance": out["total_balance"],
    }
