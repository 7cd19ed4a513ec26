# stockledger/services/ledger.py
"""
Stock movement ledger.

Every quantity change goes through `apply_movement`: it locks the product
row, writes one immutable StockMovement, moves the product aggregate by the
same delta, applies batch effects and (for receipts) queues a marketplace
sync event. All of it happens in the caller's transaction; services only
flush, the caller commits.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.config import settings
from stockledger.models.product import Product
from stockledger.models.stock_batch import StockBatch
from stockledger.models.stock_movement import (
    MovementType,
    StockMovement,
    StockMovementAllocation,
)
from stockledger.services.consumption import (
    adjust_batch_qty,
    expired_quantity,
    plan_consumption,
)
from stockledger.services.errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidMovementError,
    NotFoundError,
)
from stockledger.services.sync.outbox import enqueue_sync_event
from stockledger.utils.timezone import now_local, today_local

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =========================================================
# Helpers
# =========================================================
def coerce_movement_type(value: Any) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(str(value).strip().lower())
    except ValueError:
        raise InvalidMovementError(f"Unknown movement type: {value}") from None


def validate_movement(movement_type: MovementType, quantity: int) -> None:
    if quantity is None or int(quantity) != quantity:
        raise InvalidMovementError("Quantity must be a whole number")
    if quantity == 0:
        raise InvalidMovementError("Quantity must not be zero")
    if not movement_type.allows(quantity):
        sign = "positive" if quantity > 0 else "negative"
        raise InvalidMovementError(
            f"{movement_type.value} movements cannot be {sign} "
            f"(allowed direction: {movement_type.direction.value})",
            details={"movement_type": movement_type.value, "quantity": quantity},
        )


def lock_product(db: Session, product_id: int) -> Product:
    """SELECT ... FOR UPDATE, refreshing any stale identity-map copy."""
    product = (
        db.query(Product)
        .filter(Product.id == product_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _flush(db: Session, product_id: int) -> None:
    try:
        db.flush()
    except StaleDataError as e:
        raise ConcurrentModificationError(
            f"Product {product_id} was modified concurrently; retry the operation") from e


def _plan_batches(
    db: Session,
    product: Product,
    movement_type: MovementType,
    quantity: int,
    batch_id: Optional[int],
) -> List[Tuple[StockBatch, int]]:
    """Signed per-batch deltas for this movement, validated before anything is written."""
    if batch_id is not None:
        batch = (
            db.query(StockBatch)
            .filter(StockBatch.id == batch_id)
            .with_for_update()
            .one_or_none()
        )
        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")
        if batch.product_id != product.id:
            raise InvalidMovementError(
                f"Batch {batch.batch_number} does not belong to product {product.id}")
        if quantity < 0:
            if not batch.is_active:
                raise InvalidMovementError(f"Batch {batch.batch_number} is not active")
            if (movement_type is MovementType.SALE and batch.expiry_date is not None
                    and batch.expiry_date < today_local()):
                raise InvalidMovementError(f"Batch {batch.batch_number} has expired")
            if (batch.quantity or 0) < -quantity:
                raise InvalidMovementError(
                    f"Batch {batch.batch_number} has only {batch.quantity} units left",
                    details={"batch_id": batch.id, "available": batch.quantity},
                )
        return [(batch, quantity)]

    if quantity > 0:
        # receipt without a batch: untracked stock
        return []

    # expired lots cannot be sold
    skip_expired_on = today_local() if movement_type is MovementType.SALE else None
    plan = plan_consumption(db, product.id, -quantity, skip_expired_on=skip_expired_on)
    return [(batch, -qty) for batch, qty in plan]


# =========================================================
# Core operation
# =========================================================
def apply_movement(
    db: Session,
    *,
    product_id: int,
    movement_type: Any,
    quantity: int,
    reason: str = "",
    notes: Optional[str] = None,
    batch_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    reference_id: Any = None,
    actor: Optional[str] = None,
    unit_cost: Optional[Decimal] = None,
    movement_date: Optional[datetime] = None,
    expected_version: Optional[int] = None,
) -> StockMovement:
    mtype = coerce_movement_type(movement_type)
    validate_movement(mtype, quantity)
    quantity = int(quantity)

    product = lock_product(db, product_id)
    if expected_version is not None and product.version != expected_version:
        raise ConcurrentModificationError(
            f"Product {product_id} is at version {product.version}, expected {expected_version}",
            details={"current_version": product.version, "expected_version": expected_version},
        )

    before = product.stock_quantity or 0
    after = before + quantity
    if after < 0 and mtype.checks_stock and not settings.ALLOW_NEGATIVE_STOCK:
        raise InsufficientStockError(product.id, -quantity, before)

    if (mtype is MovementType.SALE and quantity < 0 and batch_id is None
            and not settings.ALLOW_NEGATIVE_STOCK):
        # units in expired lots are not sellable
        sellable = before - expired_quantity(db, product.id, today_local())
        if sellable < -quantity:
            raise InsufficientStockError(product.id, -quantity, max(sellable, 0))

    batch_plan = _plan_batches(db, product, mtype, quantity, batch_id)

    cost = Decimal(unit_cost) if unit_cost is not None else Decimal(product.cost_price or 0)
    mv = StockMovement(
        product_id=product.id,
        batch_id=batch_id,
        movement_type=mtype,
        quantity=quantity,
        quantity_before=before,
        quantity_after=after,
        unit_cost=cost,
        total_cost=(cost * abs(quantity)).quantize(Decimal("0.01")),
        reason=reason or "",
        notes=notes,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        movement_date=movement_date or now_local(),
        created_by=actor,
    )
    db.add(mv)
    product.stock_quantity = after
    _flush(db, product.id)

    for batch, delta in batch_plan:
        adjust_batch_qty(batch, delta)
        db.add(StockMovementAllocation(movement_id=mv.id, batch_id=batch.id, quantity=delta))

    if mtype.is_receiving(quantity):
        enqueue_sync_event(db, product, mv)

    _flush(db, product.id)

    logger.info(
        "stock movement #%s product=%s type=%s qty=%+d %s->%s ref=%s:%s by=%s",
        mv.id, product.id, mtype.value, quantity, before, after,
        reference_type, reference_id, actor,
    )
    return mv


def record_opening_balance(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    unit_cost: Optional[Decimal] = None,
    effective_date: Optional[date] = None,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
) -> StockMovement:
    """Adds previously unrecorded stock on top of the current quantity."""
    if quantity is None or quantity <= 0:
        raise InvalidMovementError("Opening balance quantity must be greater than zero")

    movement_date = None
    if effective_date is not None:
        movement_date = (effective_date if isinstance(effective_date, datetime)
                         else datetime.combine(effective_date, time.min))

    return apply_movement(
        db,
        product_id=product_id,
        movement_type=MovementType.OPENING_BALANCE,
        quantity=quantity,
        reason="Opening balance",
        notes=notes,
        reference_type="opening_balance",
        actor=actor,
        unit_cost=unit_cost,
        movement_date=movement_date,
    )


def apply_with_retry(
    session_factory: Callable[[], Session],
    fn: Callable[[Session], T],
    *,
    attempts: Optional[int] = None,
) -> T:
    """
    Run `fn` in a fresh session and commit; on ConcurrentModificationError
    roll back and run the whole unit of work again.

    `fn` should return plain values: ORM objects are expired after commit.
    """
    attempts = max(1, attempts or settings.LEDGER_RETRY_ATTEMPTS)
    attempt = 1
    while True:
        db = session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except ConcurrentModificationError:
            db.rollback()
            if attempt >= attempts:
                raise
            logger.warning("concurrent stock update, retrying (%s/%s)", attempt, attempts)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        attempt += 1


# =========================================================
# Read side
# =========================================================
def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_movements(
    db: Session,
    *,
    product_id: Optional[int] = None,
    movement_type: Any = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    reference_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[StockMovement], int]:
    q = db.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type:
        q = q.filter(StockMovement.movement_type == coerce_movement_type(movement_type))
    if reference_type:
        q = q.filter(StockMovement.reference_type == reference_type)
    if date_from:
        q = q.filter(StockMovement.movement_date >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(StockMovement.movement_date <= datetime.combine(date_to, time.max))

    total = q.count()
    rows = (
        q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def movement_sum(db: Session, product_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)
