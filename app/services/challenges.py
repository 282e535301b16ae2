"""Captcha issuance and verification: eligibility gate and reward trigger.

Proofs are stateless signed tokens, so any API process can verify a
captcha issued by another one. The only server-side state is the
RedeemedProof nonce written once a proof has paid out.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.challenges.base import get_renderer
from app.core.config import get_settings
from app.core.exceptions import ExpiredOrInvalidError, NotEligibleError
from app.core.logging import get_logger
from app.core.security import answer_matches, create_captcha_proof, load_captcha_proof
from app.models.plan import Plan
from app.models.redeemed_proof import RedeemedProof
from app.models.user import User
from app.services import plans as plans_service
from app.services import users as users_service
from app.services import wallet as wallet_service

log = get_logger(__name__)

REWARD_DESCRIPTION = "Captcha solved - Earnings"


async def issue(user: User) -> dict[str, Any]:
    """Render a captcha for an eligible user; captcha_id is the signed proof."""
    plan = await plans_service.active_plan(user)
    if plan is None:
        raise NotEligibleError()
    challenge = get_renderer().render()
    proof, nonce = create_captcha_proof(str(user.id), challenge.answer)
    log.info("captcha_issued", user_id=str(user.id), nonce=nonce, difficulty=challenge.difficulty)
    return {"image": challenge.image, "captcha_id": proof, "difficulty": challenge.difficulty}


async def _redeem(nonce: str, user_id: PydanticObjectId) -> None:
    ttl = get_settings().captcha_proof_ttl_seconds
    try:
        await RedeemedProof(
            nonce=nonce,
            user_id=user_id,
            expires_at=datetime.utcnow() + timedelta(seconds=ttl),
        ).insert()
    except DuplicateKeyError as e:
        raise ExpiredOrInvalidError("Captcha already used") from e


async def _release_unpaid(nonce: str, user_id: PydanticObjectId) -> None:
    """Un-redeem a proof whose reward never reached the wallet so the answer can be resubmitted."""
    if await wallet_service.reward_recorded(user_id, nonce):
        return
    await RedeemedProof.find_one(RedeemedProof.nonce == nonce).delete()
    log.warning("captcha_redeem_released", user_id=str(user_id), nonce=nonce)


async def _payout_rate(user: User) -> int:
    if user.plan_id is None:
        return 0
    plan = await Plan.get(user.plan_id)
    if plan is None:
        log.warning("captcha_plan_missing", user_id=str(user.id), plan_id=str(user.plan_id))
        return 0
    return plan.earnings_per_captcha


async def verify(user: User, answer: str, proof: str) -> dict[str, Any]:
    """Check an answer against its proof. A wrong answer is a normal negative result."""
    data = load_captcha_proof(proof or "")
    if data is None or data["u"] != str(user.id):
        raise ExpiredOrInvalidError()

    if not answer_matches(data, answer):
        log.info("captcha_incorrect", user_id=str(user.id), nonce=data["n"])
        return {"success": False, "earned": 0, "total_balance": await wallet_service.current_balance(user.id)}

    nonce = data["n"]
    await _redeem(nonce, user.id)
    earned = await _payout_rate(user)
    if earned > 0:
        try:
            wallet, _ = await wallet_service.credit(user.id, earned, REWARD_DESCRIPTION, reference_id=nonce)
        except Exception:
            await _release_unpaid(nonce, user.id)
            raise
        balance = wallet.balance
    else:
        balance = (await wallet_service.ensure_wallet(user.id)).balance
    await users_service.record_solve(user.id, earned)
    log.info("captcha_solved", user_id=str(user.id), earned=earned, balance=balance)
    return {"success": True, "earned": earned, "total_balance": balance}
