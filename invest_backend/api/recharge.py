from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_user
from ..database_model.user import User
from ..schemas.requests import RechargeRequest, UtrRequest
from ..services.ledger_service import LedgerService

router = APIRouter(prefix="/recharge", tags=["Recharge"])


@router.post("/request")
async def request_recharge(
    recharge_data: RechargeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Open a pending recharge for the caller."""
    recharge = await LedgerService(db).request_recharge(current_user.id, recharge_data.amount)

    return {
        "message": "Recharge request created successfully",
        "recharge": recharge.to_dict()
    }


@router.post("/update-utr/{recharge_id}")
async def update_utr(
    recharge_id: int,
    utr_data: UtrRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Attach the payment UTR to one of the caller's recharges."""
    recharge = await LedgerService(db).attach_utr(current_user.id, recharge_id, utr_data.utr)

    return {
        "message": "UTR submitted successfully. Admin will verify it shortly.",
        "recharge": recharge.to_dict()
    }
