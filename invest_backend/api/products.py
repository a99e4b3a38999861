import logging
from typing import Dict, Any, List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies.get_db import get_db
from ..dependencies.auth import get_current_user, get_current_admin_user
from ..database_model.user import User
from ..core.errors import ValidationError
from ..schemas.requests import PurchaseRequest
from ..services.catalog_service import CatalogService
from ..services.ledger_service import LedgerService
from ..services.accrual_service import AccrualService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("")
async def list_products(db: AsyncSession = Depends(get_db)) -> List[Dict[str, Any]]:
    """Public product catalog."""
    products = await CatalogService(db).list_products()
    return [product.to_dict() for product in products]


@router.post("/purchase")
async def purchase_product(
    purchase_data: PurchaseRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Buy a product using the recharge balance."""
    if purchase_data.product_id is None:
        raise ValidationError("Product ID is required")

    purchase = await LedgerService(db).purchase_product(
        user_id=current_user.id,
        product_id=purchase_data.product_id
    )

    return {
        "message": "Product purchased successfully",
        "product": purchase.to_dict()
    }


@router.post("/daily-profit")
async def run_daily_profit(
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Run today's accrual on demand."""
    logger.info(f"Admin {current_admin.id} triggered daily accrual")
    results = await AccrualService(db).run_daily_accrual()

    return {
        "message": f"Processed daily profit for {results['processed']} investments",
        **results
    }
