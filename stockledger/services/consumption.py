# stockledger/services/consumption.py
"""
Batch consumption policies.

A policy decides the order in which a product's active batches are drawn
down when an outgoing movement does not name a batch. FEFO is the default;
register more with `register_policy`.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Query, Session

from stockledger.core.config import settings
from stockledger.models.stock_batch import StockBatch

OrderFn = Callable[[Query], Query]


def _fefo(q: Query) -> Query:
    # MySQL-safe NULLS LAST: batches without an expiry go last
    nulls_last = case((StockBatch.expiry_date.is_(None), 1), else_=0)
    return q.order_by(
        nulls_last.asc(),
        StockBatch.expiry_date.asc(),
        StockBatch.id.asc(),
    )


def _fifo(q: Query) -> Query:
    return q.order_by(StockBatch.created_at.asc(), StockBatch.id.asc())


_POLICIES: Dict[str, OrderFn] = {
    "fefo": _fefo,
    "fifo": _fifo,
}


def register_policy(name: str, order_fn: OrderFn) -> None:
    _POLICIES[name.lower()] = order_fn


def get_policy(name: Optional[str] = None) -> OrderFn:
    key = (name or settings.BATCH_CONSUMPTION_POLICY or "fefo").lower()
    try:
        return _POLICIES[key]
    except KeyError:
        raise ValueError(f"Unknown batch consumption policy: {key}") from None


def plan_consumption(
    db: Session,
    product_id: int,
    quantity: int,
    *,
    policy: Optional[str] = None,
    skip_expired_on: Optional[date] = None,
) -> List[Tuple[StockBatch, int]]:
    """
    Pick (batch, qty) pairs covering up to `quantity` units.

    Stock not covered by batches is untracked stock, so a shortfall here is
    not an error: the caller already checked the product aggregate.
    Batches are locked FOR UPDATE.
    """
    if quantity <= 0:
        return []

    q = db.query(StockBatch).filter(
        StockBatch.product_id == product_id,
        StockBatch.is_active.is_(True),
        StockBatch.quantity > 0,
    )
    if skip_expired_on is not None:
        q = q.filter(
            or_(
                StockBatch.expiry_date.is_(None),
                StockBatch.expiry_date >= skip_expired_on,
            ))

    q = get_policy(policy)(q).with_for_update()

    remaining = quantity
    plan: List[Tuple[StockBatch, int]] = []
    for batch in q.all():
        if remaining <= 0:
            break
        use_qty = min(batch.quantity or 0, remaining)
        if use_qty <= 0:
            continue
        plan.append((batch, use_qty))
        remaining -= use_qty

    return plan


def expired_quantity(db: Session, product_id: int, as_of: date) -> int:
    """Units still held in active batches that expired before `as_of`."""
    total = (
        db.query(func.coalesce(func.sum(StockBatch.quantity), 0))
        .filter(
            StockBatch.product_id == product_id,
            StockBatch.is_active.is_(True),
            StockBatch.expiry_date < as_of,
        )
        .scalar()
    )
    return int(total or 0)


def adjust_batch_qty(batch: StockBatch, delta: int) -> None:
    new_qty = (batch.quantity or 0) + delta
    if new_qty < 0:
        raise ValueError(f"Batch {batch.batch_number} would go negative")
    batch.quantity = new_qty
    batch.is_active = new_qty > 0
