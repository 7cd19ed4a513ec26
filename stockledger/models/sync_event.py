# stockledger/models/sync_event.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Enum, Index
)

from stockledger.db.base import Base


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DEGRADED = "degraded"


class SyncEvent(Base):
    """
    Outbox row for the marketplace push. Written in the same transaction as
    its receiving movement, dispatched only after that transaction commits.
    """
    __tablename__ = "sync_events"
    __table_args__ = (
        Index("ix_sync_events_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    sku = Column(String(64), nullable=False)
    delta = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)

    status = Column(
        Enum(SyncStatus, name="sync_event_status",
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SyncStatus.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    synced_at = Column(DateTime, nullable=True)
