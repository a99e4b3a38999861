import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index
from ..core.database import Base


class TransactionType(str, enum.Enum):
    INVESTMENT = "investment"
    DAILY_INCOME = "daily_income"
    RECHARGE = "recharge"
    WITHDRAWAL = "withdrawal"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    INVESTMENT_REBATE = "investment_rebate"


class Transaction(Base):
    """Append-only ledger entry. Never updated or deleted."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    type = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String, default="completed", nullable=False)
    description = Column(String, nullable=True)
    # purchase id, UTR, withdrawal id or an ADJ- marker
    reference_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_transactions_type_reference", "type", "reference_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "status": self.status,
            "description": self.description,
            "reference_id": self.reference_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Transaction(id={self.id}, type={self.type}, amount={self.amount})>"
