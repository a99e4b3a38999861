from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey
from ..core.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    phone_number = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    referral_code = Column(String, unique=True, index=True, nullable=False)
    referred_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # set at most once

    # Withdrawable profit pool (accrual, rebate, admin credit)
    balance = Column(Float, default=0.0, nullable=False)
    # Non-withdrawable top-up pool, spendable only on products
    recharge_balance = Column(Float, default=0.0, nullable=False)
    total_invested = Column(Float, default=0.0, nullable=False)
    total_withdrawn = Column(Float, default=0.0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Columns never exposed through the API
    PRIVATE_FIELDS = ("hashed_password",)

    def to_dict(self) -> dict:
        """Public representation without credential fields."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "phone_number": self.phone_number,
            "referral_code": self.referral_code,
            "referred_by": self.referred_by,
            "balance": self.balance,
            "recharge_balance": self.recharge_balance,
            "total_invested": self.total_invested,
            "total_withdrawn": self.total_withdrawn,
            "is_active": self.is_active,
            "is_admin": self.is_admin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, phone={self.phone_number})>"
