from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_user
from ..database_model.user import User
from ..schemas.requests import WithdrawalRequest, compact
from ..services.ledger_service import LedgerService

router = APIRouter(prefix="/withdrawals", tags=["Withdrawals"])


@router.post("/request")
async def request_withdrawal(
    withdrawal_data: WithdrawalRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """File a withdrawal of profit balance for admin review."""
    withdrawal = await LedgerService(db).request_withdrawal(current_user.id, compact(withdrawal_data))

    return {
        "message": "Withdrawal request submitted successfully",
        "withdrawal": withdrawal.to_dict()
    }
