from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..schemas.requests import RegisterRequest, LoginRequest, compact
from ..services.user_service import UserService

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register")
async def register_user(
    user_data: RegisterRequest,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Register a new user account."""
    user_service = UserService(db)
    user = await user_service.register_user(compact(user_data))

    return {
        "message": "User registered successfully",
        "user": user.to_dict()
    }


@router.post("/login")
async def login_user(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Authenticate by phone number and password."""
    user_service = UserService(db)
    result = await user_service.authenticate_user(
        phone_number=login_data.phone_number,
        password=login_data.password
    )

    return {
        "message": "Login successful",
        "token": result["token"],
        "user": result["user"].to_dict()
    }
