from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class Payment(Document):
    """Razorpay order -> user/plan, for plan assignment on verification."""
    user_id: PydanticObjectId
    plan_id: PydanticObjectId
    amount: int
    currency: str = "INR"
    razorpay_order_id: Indexed(str, unique=True)
    razorpay_payment_id: str | None = None
    razorpay_signature: str | None = None
    status: Literal["initiated", "completed", "failed"] = "initiated"
    payment_method: str = "razorpay"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payments"
        indexes = [[("user_id", 1), ("created_at", -1)], [("status", 1)]]
