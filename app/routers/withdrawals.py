from typing import Literal

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_current_user, require_admin
from app.models.user import User
from app.models.withdrawal import BankDetails
from app.services import withdrawals as withdrawals_service
from app.services.withdrawals import withdrawal_to_dict

router = APIRouter()


class WithdrawalRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(gt=0)
    bank_details: BankDetails = Field(default_factory=BankDetails, alias="bankDetails")


class RemarksBody(BaseModel):
    remarks: str | None = Field(default=None, max_length=500)


@router.post("/request", status_code=status.HTTP_201_CREATED)
async def withdrawal_request(body: WithdrawalRequestBody, user: User = Depends(get_current_user)):
    """Request a payout; balance is checked now but only debited on approval."""
    w = await withdrawals_service.request_withdrawal(user.id, body.amount, body.bank_details)
    return {"message": "Withdrawal request submitted successfully", "withdrawal": withdrawal_to_dict(w)}


@router.get("/my")
async def withdrawals_mine(user: User = Depends(get_current_user)):
    items = await withdrawals_service.list_for_user(user.id)
    return {"count": len(items), "withdrawals": [withdrawal_to_dict(w) for w in items]}


@router.get("")
async def withdrawals_all(
    admin: User = Depends(require_admin),
    status_filter: Literal["pending", "approved", "rejected", "completed"] | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    """Admin: all withdrawals, optionally filtered by status."""
    out = await withdrawals_service.list_all(status_filter, page=page, limit=limit)
    return {
        "withdrawals": [withdrawal_to_dict(w) for w in out["items"]],
        "count": len(out["items"]),
        "total": out["total"],
        "page": out["page"],
        "pages": out["pages"],
    }


@router.put("/{withdrawal_id}/approve")
async def withdrawal_approve(
    withdrawal_id: PydanticObjectId,
    body: RemarksBody | None = None,
    admin: User = Depends(require_admin),
):
    """Admin: approve and debit the wallet (fails if the live balance is short)."""
    w, wallet = await withdrawals_service.approve(withdrawal_id, admin.id, body.remarks if body else None)
    return {
        "message": "Withdrawal approved successfully. Balance deducted.",
        "withdrawal": withdrawal_to_dict(w),
        "wallet": {"balance": wallet.balance, "total_withdrawn": wallet.total_withdrawn},
    }


@router.put("/{withdrawal_id}/reject")
async def withdrawal_reject(
    withdrawal_id: PydanticObjectId,
    body: RemarksBody | None = None,
    admin: User = Depends(require_admin),
):
    w = await withdrawals_service.reject(withdrawal_id, body.remarks if body else None, admin_id=admin.id)
    return {"message": "Withdrawal rejected", "withdrawal": withdrawal_to_dict(w)}


@router.put("/{withdrawal_id}/complete")
async def withdrawal_complete(
    withdrawal_id: PydanticObjectId,
    body: RemarksBody | None = None,
    admin: User = Depends(require_admin),
):
    w = await withdrawals_service.complete(withdrawal_id, body.remarks if body else None, admin_id=admin.id)
    return {"message": "Withdrawal marked as completed", "withdrawal": withdrawal_to_dict(w)}
