# stockledger/models/counting.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Enum,
    Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from stockledger.db.base import Base

Money = Numeric(14, 2)


class CountingStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


class CountingSession(Base):
    """
    Physical stock count for one warehouse.

    active_key mirrors warehouse_id while the session is in progress and is
    NULL otherwise; the unique index on it allows only one in-progress
    session per warehouse.
    """
    __tablename__ = "counting_sessions"
    __table_args__ = (
        UniqueConstraint("active_key", name="uq_counting_one_active_per_warehouse"),
        Index("ix_counting_sessions_wh_status", "warehouse_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    warehouse_id = Column(String(50), nullable=False)
    session_name = Column(String(255), nullable=False)
    status = Column(
        Enum(CountingStatus, name="counting_session_status",
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=CountingStatus.IN_PROGRESS,
    )
    active_key = Column(String(50), nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    items = relationship(
        "CountingItem",
        back_populates="session",
        order_by="CountingItem.position",
        cascade="all, delete-orphan",
    )


class CountingItem(Base):
    __tablename__ = "counting_items"
    __table_args__ = (
        UniqueConstraint("session_id", "product_id", name="uq_counting_item_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("counting_sessions.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    # display snapshot
    barcode = Column(String(64), nullable=True)
    sku = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    name_en = Column(String(255), nullable=True)
    unit_of_measure = Column(String(32), nullable=True)

    # system_quantity is the aggregate when the item was added, not live
    system_quantity = Column(Integer, nullable=False, default=0)
    counted_quantity = Column(Integer, nullable=False, default=0)
    difference = Column(Integer, nullable=False, default=0)
    cost_price = Column(Money, nullable=False, default=0)
    value_difference = Column(Money, nullable=False, default=0)

    # adjustment posted when the session completed
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    session = relationship("CountingSession", back_populates="items")
