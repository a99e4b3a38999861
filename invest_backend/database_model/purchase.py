import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from ..core.database import Base


class PurchaseStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class UserProduct(Base):
    """A user's purchase of a product; accrues daily income until end_date."""
    __tablename__ = "user_products"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    # Plain column: a purchase outlives deletion of its product
    product_id = Column(Integer, index=True, nullable=False)
    purchase_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    daily_income = Column(Float, nullable=False)  # snapshot at purchase time
    status = Column(String, default=PurchaseStatus.ACTIVE.value, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "daily_income": self.daily_income,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<UserProduct(id={self.id}, user_id={self.user_id}, product_id={self.product_id}, status={self.status})>"
