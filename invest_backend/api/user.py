from typing import Dict, Any, List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_user
from ..database_model.user import User
from ..services.ledger_service import LedgerService

router = APIRouter(prefix="/user", tags=["User"])


@router.get("/profile")
async def get_profile(current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    """Get the caller's profile and balances."""
    return current_user.to_dict()


@router.get("/products")
async def get_user_products(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    """List the caller's purchases with product names."""
    return await LedgerService(db).list_user_purchases(current_user.id)


@router.get("/transactions")
async def get_user_transactions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    """Ledger entries plus pending withdrawals and recharges, newest first."""
    return await LedgerService(db).list_user_transactions(current_user.id)
