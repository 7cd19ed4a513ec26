# stockledger/models/stock_batch.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship

from stockledger.db.base import Base


class StockBatch(Base):
    """
    One physical receipt (lot) of a product.
    `quantity` is what is left; it only changes through ledger movements.
    Emptied or written-off batches are deactivated, never deleted.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        Index("ix_stock_batches_product_exp", "product_id", "expiry_date"),
        Index("ix_stock_batches_active_exp", "is_active", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    batch_number = Column(String(100), nullable=False)
    lot_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)
    received_quantity = Column(Integer, nullable=False, default=0)
    supplier = Column(String(255), nullable=True)
    cost_per_unit = Column(Numeric(14, 4), nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("Product", back_populates="batches")
