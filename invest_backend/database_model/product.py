from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime
from ..core.database import Base

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    daily_income = Column(Float, nullable=False)
    duration = Column(Integer, nullable=False)  # days
    total_return = Column(Float, nullable=False)
    profit = Column(Float, nullable=False)  # informational only
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "daily_income": self.daily_income,
            "duration": self.duration,
            "total_return": self.total_return,
            "profit": self.profit,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


DEFAULT_PRODUCTS = [
    {"name": "Starter Plan", "price": 490.0, "daily_income": 80.0, "duration": 9, "total_return": 720.0, "profit": 230.0},
    {"name": "Smart Saver", "price": 750.0, "daily_income": 85.0, "duration": 14, "total_return": 1190.0, "profit": 440.0},
    {"name": "Bronze Booster", "price": 1000.0, "daily_income": 100.0, "duration": 15, "total_return": 1500.0, "profit": 500.0},
    {"name": "Silver Growth", "price": 1500.0, "daily_income": 115.0, "duration": 20, "total_return": 2300.0, "profit": 800.0},
    {"name": "Gold Income", "price": 2000.0, "daily_income": 135.0, "duration": 23, "total_return": 3105.0, "profit": 1105.0},
    {"name": "Platinum Plan", "price": 2500.0, "daily_income": 160.0, "duration": 24, "total_return": 3840.0, "profit": 1340.0},
    {"name": "Elite Earning", "price": 3000.0, "daily_income": 180.0, "duration": 25, "total_return": 4500.0, "profit": 1500.0},
    {"name": "VIP Profiter", "price": 3500.0, "daily_income": 200.0, "duration": 27, "total_return": 5400.0, "profit": 1900.0},
    {"name": "Executive Growth", "price": 4000.0, "daily_income": 220.0, "duration": 28, "total_return": 6160.0, "profit": 2160.0},
    {"name": "Royal Investor", "price": 5000.0, "daily_income": 250.0, "duration": 30, "total_return": 7500.0, "profit": 2500.0},
]
