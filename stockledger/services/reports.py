# stockledger/services/reports.py
"""Read models over products and the ledger (stock list, reorder, negative stock, ledger check)."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from stockledger.models.product import Product
from stockledger.models.stock_movement import MovementType, StockMovement
from stockledger.utils.timezone import now_local

STOCK_STATUSES = ("critical", "low", "normal")


def stock_status(product: Product) -> str:
    qty = product.stock_quantity or 0
    if qty <= (product.min_stock_level or 0):
        return "critical"
    if qty <= (product.reorder_point or 0):
        return "low"
    return "normal"


def list_products(
    db: Session,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = 200,
    offset: int = 0,
) -> List[Product]:
    q = db.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Product.name.ilike(like),
                Product.name_en.ilike(like),
                Product.sku.ilike(like),
                Product.barcode.ilike(like),
            ))
    if status == "critical":
        q = q.filter(Product.stock_quantity <= Product.min_stock_level)
    elif status == "low":
        q = q.filter(Product.stock_quantity > Product.min_stock_level,
                     Product.stock_quantity <= Product.reorder_point)
    elif status == "normal":
        q = q.filter(Product.stock_quantity > Product.min_stock_level,
                     Product.stock_quantity > Product.reorder_point)
    return q.order_by(Product.name.asc(), Product.id.asc()).offset(offset).limit(limit).all()


def _last_movement_dates(db: Session, product_ids: List[int]) -> Dict[int, datetime]:
    if not product_ids:
        return {}
    rows = (
        db.query(StockMovement.product_id, func.max(StockMovement.movement_date))
        .filter(
            StockMovement.product_id.in_(product_ids),
            StockMovement.movement_type.in_([MovementType.PURCHASE, MovementType.SALE]),
        )
        .group_by(StockMovement.product_id)
        .all()
    )
    return {pid: last for pid, last in rows}


def reorder_report(db: Session, *, as_of: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Active products at or below their reorder point, most urgent first."""
    products = (
        db.query(Product)
        .filter(Product.is_active.is_(True),
                Product.stock_quantity <= Product.reorder_point)
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
    last_dates = _last_movement_dates(db, [p.id for p in products])
    now = as_of or now_local()

    rows: List[Dict[str, Any]] = []
    for p in products:
        qty = p.stock_quantity or 0
        last = last_dates.get(p.id)
        out_of_stock = qty <= 0
        rows.append({
            "product_id": p.id,
            "sku": p.sku,
            "barcode": p.barcode,
            "name": p.name,
            "unit_of_measure": p.unit_of_measure,
            "stock_quantity": qty,
            "min_stock_level": p.min_stock_level,
            "reorder_point": p.reorder_point,
            "status": stock_status(p),
            "out_of_stock": out_of_stock,
            "suggested_order_quantity": max(0, (p.reorder_point or 0) - qty),
            "last_movement_date": last,
            "days_since_last_movement": (now - last).days if (out_of_stock and last) else None,
            "stock_value": Decimal(p.cost_price or 0) * max(qty, 0),
        })
    return rows


def negative_stock_report(db: Session) -> List[Dict[str, Any]]:
    products = (
        db.query(Product)
        .filter(Product.stock_quantity < 0)
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
        .all()
    )
    return [{
        "product_id": p.id,
        "sku": p.sku,
        "barcode": p.barcode,
        "name": p.name,
        "stock_quantity": p.stock_quantity,
        "value": Decimal(p.cost_price or 0) * p.stock_quantity,
    } for p in products]


def verify_ledger(db: Session, product_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Products whose aggregate disagrees with their movements: either the
    movement sum differs from stock_quantity, or an entry's before/after
    does not chain onto the previous one. Empty list means consistent.
    """
    mq = db.query(
        StockMovement.product_id,
        StockMovement.id,
        StockMovement.quantity,
        StockMovement.quantity_before,
        StockMovement.quantity_after,
    )
    pq = db.query(Product)
    if product_id is not None:
        mq = mq.filter(StockMovement.product_id == product_id)
        pq = pq.filter(Product.id == product_id)

    by_product: Dict[int, List[Any]] = defaultdict(list)
    for row in mq.order_by(StockMovement.product_id.asc(), StockMovement.id.asc()):
        by_product[row.product_id].append(row)

    problems: List[Dict[str, Any]] = []
    for p in pq.order_by(Product.id.asc()).all():
        movements = by_product.get(p.id, [])
        ledger_total = sum(mv.quantity for mv in movements)
        issues: List[str] = []
        if ledger_total != (p.stock_quantity or 0):
            issues.append(f"aggregate {p.stock_quantity} != ledger sum {ledger_total}")

        expected_before = 0
        for mv in movements:
            if mv.quantity_after != mv.quantity_before + mv.quantity:
                issues.append(f"movement {mv.id}: after != before + quantity")
            if mv.quantity_before != expected_before:
                issues.append(f"movement {mv.id}: before {mv.quantity_before}, expected {expected_before}")
            expected_before = mv.quantity_after

        if issues:
            problems.append({
                "product_id": p.id,
                "stock_quantity": p.stock_quantity,
                "ledger_sum": ledger_total,
                "issues": issues,
            })
    return problems
