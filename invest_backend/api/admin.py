import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_admin_user
from ..database_model.user import User
from ..core.errors import ValidationError
from ..schemas.requests import (
    BalanceAdjustmentRequest,
    VerifyUtrRequest,
    WithdrawalStatusRequest,
    RebateRequest,
    ProductRequest,
    UserUpdateRequest,
    compact
)
from ..services.user_service import UserService
from ..services.catalog_service import CatalogService
from ..services.ledger_service import LedgerService
from ..services.accrual_service import AccrualService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/dashboard-stats")
async def get_dashboard_stats(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Headline counts for the admin console."""
    return await LedgerService(db).dashboard_stats()


@router.get("/users")
async def get_users(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    users = await UserService(db).list_users()
    return [user.to_dict() for user in users]


@router.get("/transactions")
async def get_transactions(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    return await LedgerService(db).list_transactions()


@router.get("/withdrawals")
async def get_withdrawals(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    """All withdrawals, annotated with the requesting user's phone and username."""
    return await LedgerService(db).list_withdrawals()


@router.get("/recharges")
async def get_recharges(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    """All recharges, annotated with the requesting user's phone and username."""
    return await LedgerService(db).list_recharges()


@router.get("/referrals")
async def get_referrals(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    return await UserService(db).list_referrals()


@router.get("/products")
async def get_products(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    products = await CatalogService(db).list_products()
    return [product.to_dict() for product in products]


@router.post("/user/{user_identifier}/balance")
async def adjust_user_balance(
    user_identifier: str,
    adjustment: BalanceAdjustmentRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Credit a user's profit balance. The user may be named by id, phone or username."""
    user, transaction = await LedgerService(db).adjust_balance(
        identifier=user_identifier,
        amount=adjustment.amount,
        reason=adjustment.reason
    )
    logger.info(f"Admin {current_admin.id} adjusted balance of user {user.id} by {adjustment.amount}")

    return {
        "message": "Balance updated successfully",
        "user": user.to_dict(),
        "transaction": transaction.to_dict()
    }


@router.put("/user/{user_id}")
async def update_user(
    user_id: int,
    updates: UserUpdateRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    user = await UserService(db).update_user_fields(user_id, compact(updates))
    logger.info(f"Admin {current_admin.id} updated user {user_id}")

    return {
        "message": "User updated successfully",
        "user": user.to_dict()
    }


@router.post("/verify-utr")
async def verify_utr(
    verification: VerifyUtrRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Approve or reject the recharge carrying a UTR."""
    recharge = await LedgerService(db).verify_utr(verification.utr, verification.action)
    action = "approved" if recharge.status == "completed" else "rejected"
    logger.info(f"Admin {current_admin.id} {action} recharge {recharge.id}")

    return {
        "message": f"Recharge {action} successfully",
        "recharge": recharge.to_dict()
    }


@router.put("/withdrawal/{withdrawal_id}")
async def update_withdrawal(
    withdrawal_id: int,
    status_data: WithdrawalStatusRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    withdrawal = await LedgerService(db).resolve_withdrawal(withdrawal_id, status_data.status)
    logger.info(f"Admin {current_admin.id} set withdrawal {withdrawal_id} to {withdrawal.status}")

    return {
        "message": f"Withdrawal {withdrawal.status} successfully",
        "withdrawal": withdrawal.to_dict()
    }


@router.post("/process-investment-rebate")
async def process_investment_rebate(
    rebate: Optional[RebateRequest] = None,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Pay one day of income early on every running purchase.

    Not idempotent: each confirmed call pays again and shortens every
    running purchase by another day.
    """
    if rebate is None or not rebate.confirm:
        raise ValidationError(
            "Investment rebate pays out on every call; resend with {\"confirm\": true} to proceed"
        )

    logger.warning(f"Admin {current_admin.id} triggered investment rebate")
    now = datetime.utcnow()
    results = await AccrualService(db).process_investment_rebate(now=now)

    rebate_record = {
        "date": now.isoformat(),
        "users_affected": results["usersAffected"],
        "investments_processed": results["investmentsProcessed"],
        "total_amount_added": results["totalAmountAdded"],
        "admin_id": current_admin.id,
    }
    logger.warning(f"Investment rebate record: {rebate_record}")

    return {
        "message": "Investment rebate applied successfully",
        **results,
        "rebateRecord": rebate_record
    }


@router.post("/products")
async def create_product(
    product_data: ProductRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    product = await CatalogService(db).create_product(compact(product_data))

    return {
        "message": "Product created successfully",
        "product": product.to_dict()
    }


@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    product_data: ProductRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    product = await CatalogService(db).update_product(product_id, compact(product_data))

    return {
        "message": "Product updated successfully",
        "product": product.to_dict()
    }


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    product = await CatalogService(db).delete_product(product_id)

    return {
        "message": "Product deleted successfully",
        "product": product.to_dict()
    }
