from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Plan(Document):
    """Subscription plan: eligibility window and per-captcha payout (minor units)."""
    name: Indexed(str, unique=True)
    price: int = Field(ge=0)
    currency: str = "INR"
    captcha_limit: int = 0
    validity_days: int = Field(ge=1)
    earnings_per_captcha: int = Field(default=0, ge=0)
    description: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "plans"
        indexes = [[("is_active", 1)]]
