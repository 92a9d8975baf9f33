"""
Product model - catalog entry with optional price and commission overrides.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, JSON
from models.base import Base


class Product(Base):
    __tablename__ = 'products'

    productID = Column(Integer, primary_key=True, autoincrement=True)
    sku = Column(String, nullable=False, index=True)  # 'H2-1', 'H2-3', ...
    name = Column(String)

    # Overrides; NULL means "use SKU default"
    retailPrice = Column(DECIMAL(12, 2), nullable=True)
    partnerPrice = Column(DECIMAL(12, 2), nullable=True)

    # {"guest": {"L0": 1600}, "partner": {"L1": 900, "L2": 500, "L3": 200}}
    commission = Column(JSON, nullable=True)

    isActive = Column(Boolean, default=True)

    def __repr__(self):
        return f"<Product(sku={self.sku}, retail={self.retailPrice}, partner={self.partnerPrice})>"
