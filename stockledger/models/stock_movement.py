# stockledger/models/stock_movement.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Enum,
    Index, event
)
from sqlalchemy.orm import relationship, object_session

from stockledger.db.base import Base
from stockledger.services.errors import InvalidMovementError

Money = Numeric(14, 2)


# -------------------------
# Enums
# -------------------------
class MovementDirection(str, enum.Enum):
    IN = "in"
    OUT = "out"
    EITHER = "either"


class MovementType(str, enum.Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    SUPPLIER_RETURN = "supplier_return"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    TRANSFER = "transfer"
    OPENING_BALANCE = "opening_balance"

    @property
    def direction(self) -> MovementDirection:
        return _DIRECTIONS[self]

    @property
    def checks_stock(self) -> bool:
        """Adjustments and opening balances may take stock below zero."""
        return self not in (MovementType.ADJUSTMENT, MovementType.OPENING_BALANCE)

    def is_receiving(self, quantity: int) -> bool:
        """Receipts the marketplace has to hear about."""
        if self in (MovementType.PURCHASE, MovementType.RETURN):
            return True
        return self is MovementType.OPENING_BALANCE and quantity > 0

    def allows(self, quantity: int) -> bool:
        if quantity == 0:
            return False
        if self.direction is MovementDirection.IN:
            return quantity > 0
        if self.direction is MovementDirection.OUT:
            return quantity < 0
        return True


_DIRECTIONS = {
    MovementType.PURCHASE: MovementDirection.IN,
    MovementType.RETURN: MovementDirection.IN,
    MovementType.SALE: MovementDirection.OUT,
    MovementType.SUPPLIER_RETURN: MovementDirection.OUT,
    MovementType.EXPIRED: MovementDirection.OUT,
    MovementType.DAMAGED: MovementDirection.OUT,
    MovementType.TRANSFER: MovementDirection.OUT,
    MovementType.ADJUSTMENT: MovementDirection.EITHER,
    MovementType.OPENING_BALANCE: MovementDirection.EITHER,
}


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


# -------------------------
# Ledger
# -------------------------
class StockMovement(Base):
    """
    Append-only stock ledger entry.
    quantity is signed; quantity_after = quantity_before + quantity.
    Rows are never updated or deleted: corrections are new entries.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
        Index("ix_stock_movements_ref", "reference_type", "reference_id"),
        Index("ix_stock_movements_type_date", "movement_type", "movement_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=True, index=True)

    movement_type = Column(
        Enum(MovementType, name="stock_movement_type", values_callable=_enum_values),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)
    total_cost = Column(Money, nullable=False, default=0)

    reason = Column(String(255), nullable=False, default="")
    notes = Column(Text, nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(64), nullable=True)

    movement_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    product = relationship("Product")
    batch = relationship("StockBatch")


class StockMovementAllocation(Base):
    """Batch-level effect of one movement (signed, as applied to the batch)."""
    __tablename__ = "stock_movement_allocations"

    id = Column(Integer, primary_key=True, index=True)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# -------------------------
# Immutability guards
# -------------------------
@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    sess = object_session(target)
    if sess is not None and not sess.is_modified(target, include_collections=False):
        return
    raise InvalidMovementError(
        f"Stock movement {target.id} is immutable; post an offsetting movement instead")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise InvalidMovementError(
        f"Stock movement {target.id} is immutable and cannot be deleted")
