import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from ..core.database import Base


class RechargeStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def normalize(cls, value: Optional[str]) -> Optional["RechargeStatus"]:
        """Map stored or submitted values, including legacy synonyms, to a status."""
        if value is None:
            return None
        value = str(value).strip().lower()
        value = RECHARGE_STATUS_SYNONYMS.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


RECHARGE_STATUS_SYNONYMS = {
    "approved": RechargeStatus.COMPLETED.value,
    "rejected": RechargeStatus.FAILED.value,
}


class Recharge(Base):
    __tablename__ = "recharges"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String, default=RechargeStatus.PENDING.value, index=True, nullable=False)
    utr_number = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    @property
    def is_pending(self) -> bool:
        return RechargeStatus.normalize(self.status) == RechargeStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "status": self.status,
            "utr_number": self.utr_number,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }

    def __repr__(self):
        return f"<Recharge(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"
