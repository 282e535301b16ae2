from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field


class PendingEntry(BaseModel):
    """Transaction payload written by the same atomic update that moves the balance.

    Removed once the Transaction document exists; anything left behind is
    materialised by the reconciliation sweep.
    """
    transaction_id: PydanticObjectId
    type: Literal["credit", "debit"]
    amount: int
    description: str = ""
    reference_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Wallet(Document):
    """One per user. balance == total_earned - total_withdrawn, balance >= 0."""
    user_id: Indexed(PydanticObjectId, unique=True)
    balance: int = 0
    total_earned: int = 0
    total_withdrawn: int = 0
    transactions: list[PydanticObjectId] = Field(default_factory=list)
    pending_entries: list[PendingEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallets"
        indexes = [[("pending_entries.created_at", 1)]]
