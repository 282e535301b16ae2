from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field


class Transaction(Document):
    """Immutable ledger entry; never updated or deleted."""
    user_id: PydanticObjectId
    wallet_id: PydanticObjectId | None = None
    type: Literal["credit", "debit"]
    amount: int = Field(gt=0)
    description: str = ""
    reference_id: str | None = None  # withdrawal id, captcha proof nonce, payment id
    status: Literal["completed", "pending", "failed"] = "completed"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("user_id", 1), ("type", 1), ("status", 1)],
        ]
