import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from ..core.database import Base


class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def normalize(cls, value: Optional[str]) -> Optional["WithdrawalStatus"]:
        """Map stored or submitted values, including legacy synonyms, to a status."""
        if value is None:
            return None
        value = str(value).strip().lower()
        value = WITHDRAWAL_STATUS_SYNONYMS.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


WITHDRAWAL_STATUS_SYNONYMS = {
    "completed": WithdrawalStatus.APPROVED.value,
    "failed": WithdrawalStatus.REJECTED.value,
}


class WithdrawalMethod(str, enum.Enum):
    BANK = "bank"
    UPI = "upi"


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Float, nullable=False)
    method = Column(String, nullable=False)  # 'bank' or 'upi'
    bank_name = Column(String, nullable=True)
    ifsc_code = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    account_holder_name = Column(String, nullable=True)
    upi_id = Column(String, nullable=True)
    status = Column(String, default=WithdrawalStatus.PENDING.value, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "method": self.method,
            "bank_name": self.bank_name,
            "ifsc_code": self.ifsc_code,
            "account_number": self.account_number,
            "account_holder_name": self.account_holder_name,
            "upi_id": self.upi_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }

    def __repr__(self):
        return f"<Withdrawal(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"
