from fastapi import APIRouter, Depends, Query

from app.deps import get_current_user
from app.models.user import User
from app.services import wallet as wallet_service

router = APIRouter()


@router.get("")
async def wallet_get(user: User = Depends(get_current_user)):
    """Wallet with totals and the most recent transactions."""
    return await wallet_service.get_wallet(user.id)


@router.get("/balance")
async def wallet_balance(user: User = Depends(get_current_user)):
    return await wallet_service.get_balance(user.id)


@router.get("/transactions")
async def wallet_transactions(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(15, ge=1, le=200),
):
    """Transaction history for current user (newest first)."""
    return await wallet_service.get_history(user.id, page=page, limit=limit)


@router.get("/earnings-stats")
async def wallet_earnings_stats(user: User = Depends(get_current_user)):
    """Credited earnings today, over the last week, and this month."""
    return await wallet_service.earnings_stats(user.id)
