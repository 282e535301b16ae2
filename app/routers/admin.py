from datetime import datetime
from typing import Literal

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.deps import require_admin
from app.models.user import User
from app.services import admin as admin_service
from app.services import reconciliation as reconciliation_service
from app.services.wallet import transaction_to_dict

router = APIRouter()


class AddFundsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: PydanticObjectId = Field(alias="userId")
    amount: int = Field(gt=0)
    description: str | None = Field(default=None, max_length=200)


@router.get("/stats")
async def admin_stats(admin: User = Depends(require_admin)):
    return await admin_service.dashboard_stats()


@router.post("/wallet/add-funds")
async def admin_add_funds(body: AddFundsRequest, admin: User = Depends(require_admin)):
    """Credit a user's wallet by hand."""
    wallet, txn = await admin_service.add_funds(admin.id, body.user_id, body.amount, body.description)
    return {
        "message": "Funds added successfully",
        "wallet": {
            "balance": wallet.balance,
            "total_earned": wallet.total_earned,
            "total_withdrawn": wallet.total_withdrawn,
        },
        "transaction": transaction_to_dict(txn),
    }


@router.post("/reconcile")
async def admin_reconcile(admin: User = Depends(require_admin)):
    """Run the ledger reconciliation sweep now and return its counts."""
    return await reconciliation_service.reconcile()


@router.get("/users")
async def admin_users(
    admin: User = Depends(require_admin),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    out = await admin_service.list_users(search, page=page, limit=limit)
    return {
        "users": [admin_service.user_to_dict(u) for u in out["items"]],
        "count": len(out["items"]),
        "total": out["total"],
        "page": out["page"],
        "pages": out["pages"],
    }


@router.get("/users/{user_id}")
async def admin_user_details(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    """User with plan, wallet totals and withdrawals."""
    return await admin_service.user_details(user_id)


@router.put("/users/{user_id}/block")
async def admin_block_user(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    user = await admin_service.set_blocked(admin.id, user_id, True)
    return {"message": "User blocked successfully", "user": admin_service.user_to_dict(user)}


@router.put("/users/{user_id}/unblock")
async def admin_unblock_user(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    user = await admin_service.set_blocked(admin.id, user_id, False)
    return {"message": "User unblocked successfully", "user": admin_service.user_to_dict(user)}


@router.post("/users/{user_id}/revoke-tokens")
async def admin_revoke_tokens(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    """Sign the user out everywhere."""
    user = await admin_service.revoke_tokens(admin.id, user_id)
    return {"message": "Tokens revoked", "user": admin_service.user_to_dict(user)}


@router.delete("/users/{user_id}")
async def admin_delete_user(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    """Delete a user together with their wallet, transactions and withdrawals."""
    deleted = await admin_service.delete_user(admin.id, user_id)
    return {"message": "User deleted successfully", "deleted": deleted}


@router.get("/reports")
async def admin_earning_reports(
    admin: User = Depends(require_admin),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    period: Literal["daily", "weekly", "monthly"] = Query("daily"),
):
    report = await admin_service.earning_reports(start_date, end_date, period)
    return {"period": period, "count": len(report), "report": report}
