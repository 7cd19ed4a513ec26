# stockledger/api/routes_batches.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from stockledger.api.deps import current_actor, get_db, get_sync_adapter
from stockledger.api.response import ok
from stockledger.api.routes_stock import batch_out
from stockledger.schemas.batch import BatchIn, ExpiryUpdateIn, WriteOffIn
from stockledger.schemas.stock import MovementOut
from stockledger.services import batches as batch_svc
from stockledger.services.sync.outbox import dispatch_after_commit

router = APIRouter(prefix="/stock/batches", tags=["Batches"])


@router.post("", status_code=201)
def receive_batch(
    payload: BatchIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
    adapter=Depends(get_sync_adapter),
):
    batch, mv = batch_svc.add_batch(
        db,
        product_id=payload.product_id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        lot_number=payload.lot_number,
        supplier=payload.supplier,
        cost_per_unit=payload.cost_per_unit,
        actor=actor,
    )
    db.commit()
    db.refresh(batch)
    db.refresh(mv)
    data = {
        "batch": batch_out(batch),
        "movement": MovementOut.model_validate(mv).model_dump(),
    }
    warnings = dispatch_after_commit(db, adapter, background_tasks)
    return ok(data, warnings=warnings, status_code=201)


@router.get("/near-expiry")
def near_expiry(
    days: int = Query(90, ge=0, le=3650),
    db: Session = Depends(get_db),
):
    rows = batch_svc.near_expiry(db, within_days=days)
    return ok([batch_out(b) for b in rows], meta={"days": days})


@router.patch("/expiry")
def update_expiry(payload: ExpiryUpdateIn, db: Session = Depends(get_db)):
    rows = batch_svc.update_expiry(db, payload.batch_ids, payload.expiry_date)
    db.commit()
    return ok([batch_out(b) for b in rows])


@router.post("/{batch_id}/write-off", status_code=201)
def write_off(
    batch_id: int,
    payload: WriteOffIn,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
):
    mv = batch_svc.write_off_batch(
        db,
        batch_id,
        movement_type=payload.movement_type,
        reason=payload.reason,
        notes=payload.notes,
        actor=actor,
    )
    db.commit()
    db.refresh(mv)
    return ok(MovementOut.model_validate(mv).model_dump(), status_code=201)
