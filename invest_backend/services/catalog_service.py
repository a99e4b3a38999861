import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from ..database_model.product import Product, DEFAULT_PRODUCTS
from ..database_model.purchase import UserProduct, PurchaseStatus
from ..core.errors import NotFoundError, ValidationError, ConflictError


logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("name", "price", "daily_income", "duration", "total_return", "profit")
FLOAT_FIELDS = {"price", "daily_income", "total_return", "profit"}


class CatalogService:
    """Service for managing investment products."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_products(self) -> List[Product]:
        result = await self.db.execute(select(Product).order_by(Product.id))
        return list(result.scalars().all())

    async def get_product(self, product_id: int) -> Product:
        """Get a product by ID.

        Raises:
            NotFoundError: If no such product exists
        """
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if not product:
            raise NotFoundError("Product not found")
        return product

    async def create_product(self, data: Dict[str, Any]) -> Product:
        if any(data.get(field) in (None, "") for field in PRODUCT_FIELDS):
            raise ValidationError("All product fields are required")

        values = self._coerce(data)
        product = Product(**values)

        self.db.add(product)
        await self.db.commit()
        await self.db.refresh(product)

        logger.info(f"Created product {product.id} ({product.name})")
        return product

    async def update_product(self, product_id: int, data: Dict[str, Any]) -> Product:
        """Update whitelisted product fields; unknown keys are ignored."""
        product = await self.get_product(product_id)

        values = self._coerce({
            key: value for key, value in data.items()
            if key in PRODUCT_FIELDS and value not in (None, "")
        })
        for field, value in values.items():
            setattr(product, field, value)
        product.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(product)

        logger.info(f"Updated product {product.id}: {sorted(values.keys())}")
        return product

    async def delete_product(self, product_id: int) -> Product:
        """Delete a product that no active purchase references."""
        product = await self.get_product(product_id)

        result = await self.db.execute(
            select(func.count(UserProduct.id)).where(
                UserProduct.product_id == product_id,
                UserProduct.status == PurchaseStatus.ACTIVE.value
            )
        )
        if result.scalar_one() > 0:
            raise ConflictError(
                "Cannot delete product with active investments. "
                "Please wait for all investments to complete."
            )

        await self.db.delete(product)
        await self.db.commit()

        logger.info(f"Deleted product {product_id}")
        return product

    async def seed_default_products(self) -> int:
        """Insert the default plans into an empty catalog.

        Returns:
            int: Number of products inserted
        """
        result = await self.db.execute(select(func.count(Product.id)))
        if result.scalar_one() > 0:
            return 0

        for values in DEFAULT_PRODUCTS:
            self.db.add(Product(**values))
        await self.db.commit()

        logger.info(f"Seeded {len(DEFAULT_PRODUCTS)} default products")
        return len(DEFAULT_PRODUCTS)

    def _coerce(self, data: Dict[str, Any]) -> Dict[str, Any]:
        values = {}
        for field, value in data.items():
            if field not in PRODUCT_FIELDS:
                continue
            try:
                if field in FLOAT_FIELDS:
                    value = float(value)
                elif field == "duration":
                    value = int(value)
                else:
                    value = str(value).strip()
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid value for {field}")

            if field in FLOAT_FIELDS and field != "profit" and value <= 0:
                raise ValidationError(f"{field} must be greater than zero")
            if field == "duration" and value <= 0:
                raise ValidationError("duration must be greater than zero")
            if field == "name" and not value:
                raise ValidationError("All product fields are required")
            values[field] = value
        return values
