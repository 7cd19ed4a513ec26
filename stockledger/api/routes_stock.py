# stockledger/api/routes_stock.py
from __future__ import annotations

import logging
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from stockledger.api.deps import current_actor, get_db, get_sync_adapter
from stockledger.api.response import ok
from stockledger.models.stock_movement import MovementType
from stockledger.schemas.batch import BatchOut
from stockledger.schemas.stock import (
    LedgerIssueOut,
    MovementIn,
    MovementOut,
    OpeningBalanceIn,
    ProductOut,
)
from stockledger.services import batches as batch_svc
from stockledger.services import ledger, reports
from stockledger.services.sync.outbox import dispatch_after_commit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/stock", tags=["Stock"])


def _product_out(p) -> dict:
    out = ProductOut.model_validate(p)
    out.status = reports.stock_status(p)
    return out.model_dump()


def batch_out(b) -> dict:
    out = BatchOut.model_validate(b)
    out.days_until_expiry = batch_svc.days_until_expiry(b.expiry_date)
    out.expiry_status = batch_svc.expiry_status(b.expiry_date)
    return out.model_dump()


# =========================
# PRODUCTS
# =========================
@router.get("/products")
def list_products(
    search: Optional[str] = Query(None),
    status: Optional[Literal["critical", "low", "normal"]] = Query(None),
    include_inactive: bool = Query(False),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = reports.list_products(db, search=search, status=status,
                                 include_inactive=include_inactive,
                                 limit=limit, offset=offset)
    return ok([_product_out(p) for p in rows])


@router.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return ok(_product_out(ledger.get_product(db, product_id)))


@router.get("/products/{product_id}/batches")
def list_product_batches(
    product_id: int,
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
):
    rows = batch_svc.list_batches(db, product_id, active_only=active_only)
    return ok([batch_out(b) for b in rows])


# =========================
# MOVEMENTS
# =========================
@router.post("/movements", status_code=201)
def create_movement(
    payload: MovementIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
    adapter=Depends(get_sync_adapter),
):
    mv = ledger.apply_movement(
        db,
        product_id=payload.product_id,
        movement_type=payload.movement_type,
        quantity=payload.quantity,
        reason=payload.reason,
        notes=payload.notes,
        batch_id=payload.batch_id,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        actor=actor,
        unit_cost=payload.unit_cost,
        movement_date=payload.movement_date,
        expected_version=payload.expected_version,
    )
    db.commit()
    db.refresh(mv)
    data = MovementOut.model_validate(mv).model_dump()
    warnings = dispatch_after_commit(db, adapter, background_tasks)
    return ok(data, warnings=warnings, status_code=201)


@router.get("/movements")
def list_movements(
    product_id: Optional[int] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    reference_type: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = ledger.list_movements(
        db,
        product_id=product_id,
        movement_type=movement_type,
        reference_type=reference_type,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return ok(
        [MovementOut.model_validate(m).model_dump() for m in rows],
        meta={"total": total, "limit": limit, "offset": offset},
    )


@router.post("/opening-balance", status_code=201)
def create_opening_balance(
    payload: OpeningBalanceIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
    adapter=Depends(get_sync_adapter),
):
    mv = ledger.record_opening_balance(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        effective_date=payload.effective_date,
        notes=payload.notes,
        actor=actor,
    )
    db.commit()
    db.refresh(mv)
    data = MovementOut.model_validate(mv).model_dump()
    warnings = dispatch_after_commit(db, adapter, background_tasks)
    return ok(data, warnings=warnings, status_code=201)


# =========================
# REPORTS
# =========================
@router.get("/reports/reorder")
def reorder_report(db: Session = Depends(get_db)):
    return ok(reports.reorder_report(db))


@router.get("/reports/negative")
def negative_stock_report(db: Session = Depends(get_db)):
    return ok(reports.negative_stock_report(db))


@router.get("/ledger/verify")
def verify_ledger(
    product_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    problems = reports.verify_ledger(db, product_id)
    return ok(
        [LedgerIssueOut(**p).model_dump() for p in problems],
        meta={"consistent": not problems},
    )
