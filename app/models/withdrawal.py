from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

WithdrawalStatus = Literal["pending", "approved", "rejected", "completed"]


class BankDetails(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    account_holder: str | None = None
    account_number: str | None = None
    bank_name: str | None = None
    ifsc_code: str | None = None
    upi_id: str | None = None


class Withdrawal(Document):
    user_id: PydanticObjectId
    amount: int
    status: WithdrawalStatus = "pending"
    bank_details: BankDetails = Field(default_factory=BankDetails)
    remarks: str = ""
    approved_by: PydanticObjectId | None = None
    approval_date: datetime | None = None
    completion_date: datetime | None = None
    # Allocated when claimed for approval; the wallet debit is keyed on it.
    debit_transaction_id: PydanticObjectId | None = None
    debited: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "withdrawals"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", -1)],
            [("status", 1), ("debited", 1)],
        ]
