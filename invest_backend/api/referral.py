from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_user
from ..database_model.user import User
from ..schemas.requests import ReferralRequest
from ..services.user_service import UserService

router = APIRouter(prefix="/referral", tags=["Referral"])


@router.post("/verify-referral")
async def verify_referral(
    referral_data: ReferralRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Claim a referral code after registration."""
    referral_code = (referral_data.referral_code or "").strip()
    referrer = await UserService(db).apply_referral_code(current_user.id, referral_code)

    return {
        "message": "Referral code applied successfully",
        "referrer": {
            "id": referrer.id,
            "name": referrer.name,
            "username": referrer.username
        }
    }
