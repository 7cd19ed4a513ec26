# stockledger/services/batches.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.models.stock_batch import StockBatch
from stockledger.models.stock_movement import MovementType, StockMovement
from stockledger.services.errors import InvalidMovementError, NotFoundError
from stockledger.services.ledger import apply_movement, coerce_movement_type, get_product
from stockledger.utils.timezone import today_local

logger = logging.getLogger(__name__)

WRITE_OFF_TYPES = (
    MovementType.EXPIRED,
    MovementType.DAMAGED,
    MovementType.SUPPLIER_RETURN,
)


# -------------------------
# Expiry status
# -------------------------
def days_until_expiry(expiry_date: Optional[date], as_of: Optional[date] = None) -> Optional[int]:
    if expiry_date is None:
        return None
    return (expiry_date - (as_of or today_local())).days


def expiry_status(expiry_date: Optional[date], as_of: Optional[date] = None) -> str:
    """critical (<= 30 days, expired included), warning (<= 90 days) or normal."""
    days = days_until_expiry(expiry_date, as_of)
    if days is None:
        return "normal"
    if days <= settings.EXPIRY_CRITICAL_DAYS:
        return "critical"
    if days <= settings.EXPIRY_WARNING_DAYS:
        return "warning"
    return "normal"


# -------------------------
# Receiving
# -------------------------
def add_batch(
    db: Session,
    *,
    product_id: int,
    batch_number: str,
    quantity: int,
    expiry_date: Optional[date] = None,
    lot_number: Optional[str] = None,
    supplier: Optional[str] = None,
    cost_per_unit: Optional[Decimal] = None,
    actor: Optional[str] = None,
) -> Tuple[StockBatch, StockMovement]:
    """
    Receive a new batch. The batch row and its purchase movement are
    written together; the batch quantity itself comes from the movement.
    """
    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise InvalidMovementError("Batch number is required")
    if quantity is None or quantity <= 0:
        raise InvalidMovementError("Batch quantity must be greater than zero")

    product = get_product(db, product_id)
    cost = Decimal(cost_per_unit) if cost_per_unit is not None else Decimal(product.cost_price or 0)

    batch = StockBatch(
        product_id=product.id,
        batch_number=batch_number,
        lot_number=lot_number,
        expiry_date=expiry_date,
        quantity=0,
        received_quantity=quantity,
        supplier=supplier,
        cost_per_unit=cost,
        is_active=True,
    )
    db.add(batch)
    db.flush()

    mv = apply_movement(
        db,
        product_id=product.id,
        movement_type=MovementType.PURCHASE,
        quantity=quantity,
        reason=f"Batch receipt: {batch_number}",
        notes=f"Supplier: {supplier}" if supplier else None,
        batch_id=batch.id,
        reference_type="stock_batch",
        reference_id=batch.id,
        actor=actor,
        unit_cost=cost,
    )
    return batch, mv


# -------------------------
# Queries
# -------------------------
def get_batch(db: Session, batch_id: int) -> StockBatch:
    batch = db.get(StockBatch, batch_id)
    if not batch:
        raise NotFoundError(f"Batch {batch_id} not found")
    return batch


def list_batches(db: Session, product_id: int, *, active_only: bool = True) -> List[StockBatch]:
    get_product(db, product_id)
    q = db.query(StockBatch).filter(StockBatch.product_id == product_id)
    if active_only:
        q = q.filter(StockBatch.is_active.is_(True))
    return q.order_by(StockBatch.expiry_date.asc(), StockBatch.id.asc()).all()


def near_expiry(db: Session, *, within_days: int = 90,
                as_of: Optional[date] = None) -> List[StockBatch]:
    """Active batches with stock left that expire within N days (already expired included)."""
    cutoff = (as_of or today_local()) + timedelta(days=within_days)
    return (
        db.query(StockBatch)
        .filter(
            StockBatch.is_active.is_(True),
            StockBatch.quantity > 0,
            StockBatch.expiry_date.isnot(None),
            StockBatch.expiry_date <= cutoff,
        )
        .order_by(StockBatch.expiry_date.asc(), StockBatch.id.asc())
        .all()
    )


# -------------------------
# Corrections
# -------------------------
def update_expiry(db: Session, batch_ids: Sequence[int],
                  expiry_date: Optional[date]) -> List[StockBatch]:
    """Fix the expiry date of one or more batches. Quantities are untouched."""
    ids = sorted(set(batch_ids or []))
    if not ids:
        raise InvalidMovementError("No batches selected")

    batches = db.query(StockBatch).filter(StockBatch.id.in_(ids)).all()
    missing = set(ids) - {b.id for b in batches}
    if missing:
        raise NotFoundError(f"Batches not found: {sorted(missing)}")

    for b in batches:
        b.expiry_date = expiry_date
    db.flush()
    logger.info("expiry of batches %s set to %s", ids, expiry_date)
    return batches


def write_off_batch(
    db: Session,
    batch_id: int,
    *,
    movement_type: Any = MovementType.EXPIRED,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
) -> StockMovement:
    """Take everything left in a batch out of stock; the batch ends up inactive."""
    mtype = coerce_movement_type(movement_type)
    if mtype not in WRITE_OFF_TYPES:
        raise InvalidMovementError(
            f"Batches can only be written off as {', '.join(t.value for t in WRITE_OFF_TYPES)}")

    batch = get_batch(db, batch_id)
    if not batch.is_active or (batch.quantity or 0) <= 0:
        raise InvalidMovementError(f"Batch {batch.batch_number} has no stock to write off")

    return apply_movement(
        db,
        product_id=batch.product_id,
        movement_type=mtype,
        quantity=-batch.quantity,
        reason=reason or f"Batch write-off: {batch.batch_number}",
        notes=notes,
        batch_id=batch.id,
        reference_type="stock_batch",
        reference_id=batch.id,
        actor=actor,
        unit_cost=batch.cost_per_unit,
    )
