# stockledger/models/product.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Index
)
from sqlalchemy.orm import relationship

from stockledger.db.base import Base

Money = Numeric(14, 2)


class Product(Base):
    """
    Product master as seen by the ledger. The catalogue itself is owned
    elsewhere; the ledger only writes stock_quantity (and version).

    stock_quantity always equals the sum of the product's stock_movements.
    """
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_name", "name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, nullable=True, index=True)
    barcode = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    name_en = Column(String(255), nullable=True)
    unit_of_measure = Column(String(32), nullable=False, default="unit")

    stock_quantity = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer, nullable=False, default=0)
    cost_price = Column(Money, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    # optimistic concurrency counter, bumped by every UPDATE
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    batches = relationship("StockBatch", back_populates="product",
                           order_by="StockBatch.expiry_date")

    __mapper_args__ = {"version_id_col": version}

    @property
    def sync_sku(self) -> str:
        """Identifier the marketplace knows the product by."""
        return self.barcode or self.sku or str(self.id)
