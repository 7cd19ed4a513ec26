# stockledger/services/counting.py
"""
Stock counting (physical inventory reconciliation).

Session lifecycle: in_progress -> paused -> in_progress -> completed.
Only one in-progress session per warehouse. Completing a session posts one
adjustment movement per item whose count differs from live stock.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.models.counting import CountingItem, CountingSession, CountingStatus
from stockledger.models.product import Product
from stockledger.models.stock_movement import MovementType
from stockledger.services.errors import (
    InvalidCountError,
    NotFoundError,
    SessionStateError,
)
from stockledger.services.ledger import apply_movement, lock_product
from stockledger.utils.timezone import now_local, today_local

logger = logging.getLogger(__name__)

CONFLICT_ACTIONS = ("pause", "discard")
SEARCH_LIMIT = 10


@dataclass
class AddItemResult:
    item: Optional[CountingItem] = None
    already_counted: bool = False
    candidates: List[Product] = field(default_factory=list)


@dataclass
class CountingSummary:
    total_items: int
    matched_items: int
    unmatched_items: int
    total_value_difference: Decimal
    overstock_items: List[CountingItem]
    understock_items: List[CountingItem]


# -------------------------
# Helpers
# -------------------------
def _require_status(sess: CountingSession, allowed: Iterable[CountingStatus], action: str) -> None:
    allowed = tuple(allowed)
    if sess.status not in allowed:
        raise SessionStateError(
            f"Cannot {action} session {sess.id}: it is {sess.status.value}",
            details={"session_id": sess.id, "status": sess.status.value},
        )


def _check_warehouse(warehouse_id: str) -> str:
    wh = (warehouse_id or "").strip()
    if wh not in settings.WAREHOUSES:
        raise NotFoundError(f"Unknown warehouse: {warehouse_id}")
    return wh


def _recompute(item: CountingItem) -> None:
    item.difference = (item.counted_quantity or 0) - (item.system_quantity or 0)
    item.value_difference = (Decimal(item.difference) * Decimal(item.cost_price or 0)).quantize(Decimal("0.01"))


def _resolve_conflict(db: Session, warehouse_id: str, on_conflict: Optional[str],
                      exclude_id: Optional[int] = None) -> None:
    q = db.query(CountingSession).filter(
        CountingSession.warehouse_id == warehouse_id,
        CountingSession.status == CountingStatus.IN_PROGRESS,
    )
    if exclude_id is not None:
        q = q.filter(CountingSession.id != exclude_id)
    blocking = q.with_for_update().one_or_none()
    if blocking is None:
        return

    if on_conflict not in CONFLICT_ACTIONS:
        raise SessionStateError(
            f"Warehouse {warehouse_id} already has session {blocking.id} in progress; "
            f"pause or discard it first",
            details={"blocking_session_id": blocking.id, "options": list(CONFLICT_ACTIONS)},
        )

    if on_conflict == "pause":
        blocking.status = CountingStatus.PAUSED
        blocking.active_key = None
        logger.info("counting session #%s paused to free warehouse %s", blocking.id, warehouse_id)
    else:
        db.delete(blocking)
        logger.info("counting session #%s discarded to free warehouse %s", blocking.id, warehouse_id)
    # the unique active_key has to be released before the new row claims it
    db.flush()


def _claim_warehouse(db: Session, sess: CountingSession) -> None:
    sess.status = CountingStatus.IN_PROGRESS
    sess.active_key = sess.warehouse_id
    try:
        db.flush()
    except IntegrityError as e:
        raise SessionStateError(
            f"Warehouse {sess.warehouse_id} already has a session in progress") from e


# -------------------------
# Session lifecycle
# -------------------------
def start_session(
    db: Session,
    *,
    warehouse_id: str,
    session_name: Optional[str] = None,
    on_conflict: Optional[str] = None,
    actor: Optional[str] = None,
) -> CountingSession:
    wh = _check_warehouse(warehouse_id)
    _resolve_conflict(db, wh, on_conflict)

    name = (session_name or "").strip() or f"Stock count {wh} - {today_local().isoformat()}"
    sess = CountingSession(warehouse_id=wh, session_name=name, created_by=actor)
    db.add(sess)
    _claim_warehouse(db, sess)
    logger.info("counting session #%s started for %s by %s", sess.id, wh, actor)
    return sess


def get_session(db: Session, session_id: int, *, lock: bool = False) -> CountingSession:
    q = db.query(CountingSession).filter(CountingSession.id == session_id)
    if lock:
        q = q.populate_existing().with_for_update()
    sess = q.one_or_none()
    if not sess:
        raise NotFoundError(f"Counting session {session_id} not found")
    return sess


def get_active_session(db: Session, warehouse_id: str) -> Optional[CountingSession]:
    return (
        db.query(CountingSession)
        .filter(CountingSession.warehouse_id == warehouse_id,
                CountingSession.status == CountingStatus.IN_PROGRESS)
        .one_or_none()
    )


def list_sessions(
    db: Session,
    *,
    warehouse_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[CountingSession]:
    q = db.query(CountingSession)
    if warehouse_id:
        q = q.filter(CountingSession.warehouse_id == warehouse_id)
    if status:
        q = q.filter(CountingSession.status == CountingStatus(status))
    return q.order_by(CountingSession.updated_at.desc(), CountingSession.id.desc()).limit(limit).all()


def pause_session(db: Session, session_id: int) -> CountingSession:
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, ), "pause")
    sess.status = CountingStatus.PAUSED
    sess.active_key = None
    db.flush()
    return sess


def resume_session(db: Session, session_id: int, *,
                   on_conflict: Optional[str] = None) -> CountingSession:
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.PAUSED, ), "resume")
    _resolve_conflict(db, sess.warehouse_id, on_conflict, exclude_id=sess.id)
    _claim_warehouse(db, sess)
    return sess


def discard_session(db: Session, session_id: int) -> None:
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, CountingStatus.PAUSED), "discard")
    db.delete(sess)
    db.flush()
    logger.info("counting session #%s discarded", session_id)


# -------------------------
# Items
# -------------------------
def lookup_products(db: Session, query: str, *, limit: int = SEARCH_LIMIT) -> List[Product]:
    """Exact barcode/SKU hit wins; otherwise fuzzy match on codes and names."""
    term = (query or "").strip()
    if not term:
        return []

    exact = (
        db.query(Product)
        .filter(Product.is_active.is_(True),
                or_(Product.barcode == term, Product.sku == term))
        .order_by(Product.id.asc())
        .first()
    )
    if exact:
        return [exact]

    like = f"%{term}%"
    return (
        db.query(Product)
        .filter(
            Product.is_active.is_(True),
            or_(
                Product.barcode.ilike(like),
                Product.sku.ilike(like),
                Product.name.ilike(like),
                Product.name_en.ilike(like),
            ))
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def add_item(
    db: Session,
    session_id: int,
    *,
    query: Optional[str] = None,
    product_id: Optional[int] = None,
    counted_quantity: Optional[int] = None,
) -> AddItemResult:
    """
    Add a product to the count. Several matches come back as candidates
    and nothing is added. A product already in the session returns its
    existing item untouched.
    """
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, ), "add items to")

    if product_id is not None:
        product = db.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
    else:
        matches = lookup_products(db, query or "")
        if not matches:
            raise NotFoundError(f"No product matches '{query}'")
        if len(matches) > 1:
            return AddItemResult(candidates=matches)
        product = matches[0]

    existing = (
        db.query(CountingItem)
        .filter(CountingItem.session_id == sess.id, CountingItem.product_id == product.id)
        .one_or_none()
    )
    if existing:
        return AddItemResult(item=existing, already_counted=True)

    if counted_quantity is not None and counted_quantity < 0:
        raise InvalidCountError("Counted quantity cannot be negative")

    last_pos = (
        db.query(func.coalesce(func.max(CountingItem.position), 0))
        .filter(CountingItem.session_id == sess.id)
        .scalar()
    )
    item = CountingItem(
        session_id=sess.id,
        product_id=product.id,
        position=int(last_pos or 0) + 1,
        barcode=product.barcode,
        sku=product.sku,
        name=product.name,
        name_en=product.name_en,
        unit_of_measure=product.unit_of_measure,
        system_quantity=product.stock_quantity or 0,
        counted_quantity=counted_quantity or 0,
        cost_price=product.cost_price or 0,
    )
    _recompute(item)
    sess.items.append(item)
    try:
        db.flush()
    except IntegrityError as e:
        raise SessionStateError(f"Product {product.id} is already in session {sess.id}") from e
    return AddItemResult(item=item)


def _get_item(db: Session, sess: CountingSession, item_id: int) -> CountingItem:
    item = db.get(CountingItem, item_id)
    if not item or item.session_id != sess.id:
        raise NotFoundError(f"Item {item_id} not found in session {sess.id}")
    return item


def record_count(db: Session, session_id: int, item_id: int,
                 counted_quantity: int) -> CountingItem:
    if counted_quantity is None or counted_quantity < 0:
        raise InvalidCountError("Counted quantity cannot be negative")

    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, ), "record counts in")
    item = _get_item(db, sess, item_id)
    item.counted_quantity = counted_quantity
    _recompute(item)
    sess.updated_at = now_local()
    db.flush()
    return item


def remove_item(db: Session, session_id: int, item_id: int) -> None:
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, ), "remove items from")
    item = _get_item(db, sess, item_id)
    sess.items.remove(item)
    db.flush()


# -------------------------
# Completion
# -------------------------
def complete_session(db: Session, session_id: int, *,
                     actor: Optional[str] = None) -> CountingSession:
    """
    Post the reconciliation. Each adjustment is computed against the live
    (locked) stock, so stock that moved after the snapshot still ends at
    the counted quantity.
    """
    sess = get_session(db, session_id, lock=True)
    _require_status(sess, (CountingStatus.IN_PROGRESS, CountingStatus.PAUSED), "complete")

    posted = 0
    for item in sess.items:
        product = lock_product(db, item.product_id)
        delta = (item.counted_quantity or 0) - (product.stock_quantity or 0)
        if delta == 0:
            continue
        mv = apply_movement(
            db,
            product_id=item.product_id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=delta,
            reason="Stock count reconciliation",
            notes=(f"{sess.session_name}: counted {item.counted_quantity}, "
                   f"system {item.system_quantity}"),
            reference_type="counting_session",
            reference_id=sess.id,
            actor=actor,
            unit_cost=item.cost_price,
        )
        item.movement_id = mv.id
        posted += 1

    sess.status = CountingStatus.COMPLETED
    sess.active_key = None
    sess.completed_at = now_local()
    db.flush()
    logger.info("counting session #%s completed: %s items, %s adjustments",
                sess.id, len(sess.items), posted)
    return sess


# -------------------------
# Summary
# -------------------------
def summarize(items: Iterable[CountingItem]) -> CountingSummary:
    """Pure aggregation over the items as they are now."""
    items = list(items)
    over = [i for i in items if (i.difference or 0) > 0]
    under = [i for i in items if (i.difference or 0) < 0]
    matched = len(items) - len(over) - len(under)
    total_value = sum((Decimal(i.value_difference or 0) for i in items), Decimal("0"))
    return CountingSummary(
        total_items=len(items),
        matched_items=matched,
        unmatched_items=len(over) + len(under),
        total_value_difference=total_value,
        overstock_items=over,
        understock_items=under,
    )
