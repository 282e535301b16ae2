from datetime import datetime

from beanie import PydanticObjectId
from beanie.operators import Inc, Set

from app.core.exceptions import NotFoundError
from app.models.user import User


async def get_user(user_id: PydanticObjectId) -> User:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def record_solve(user_id: PydanticObjectId, earned: int) -> None:
    """Bump the lifetime solved/earned counters in one atomic update."""
    await User.find_one(User.id == user_id).update(
        Inc({User.total_captchas_solved: 1, User.total_earnings: earned}),
        Set({User.updated_at: datetime.utcnow()}),
    )


def access_token_payload(user: User) -> dict:
    return {"user_id": str(user.id), "token_version": user.token_version}
