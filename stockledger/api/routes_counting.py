# stockledger/api/routes_counting.py
from __future__ import annotations

import logging
from io import BytesIO
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from stockledger.api.deps import current_actor, get_db, get_sync_adapter
from stockledger.api.response import ok
from stockledger.core.config import settings
from stockledger.models.counting import CountingStatus
from stockledger.schemas.counting import (
    CandidateOut,
    CountIn,
    CountingItemOut,
    ItemAddIn,
    SessionDetailOut,
    SessionOut,
    SessionResumeIn,
    SessionStartIn,
    SummaryOut,
)
from stockledger.services import counting
from stockledger.services.counting_export import export_csv, export_filename, export_xlsx
from stockledger.services.sync.outbox import dispatch_after_commit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/counting", tags=["Stock Counting"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _detail(sess) -> dict:
    return SessionDetailOut.model_validate(sess).model_dump()


# =========================
# SESSIONS
# =========================
@router.get("/warehouses")
def list_warehouses():
    return ok(settings.WAREHOUSES)


@router.post("/sessions", status_code=201)
def start_session(
    payload: SessionStartIn,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
):
    sess = counting.start_session(
        db,
        warehouse_id=payload.warehouse_id,
        session_name=payload.session_name,
        on_conflict=payload.on_conflict,
        actor=actor,
    )
    db.commit()
    return ok(_detail(sess), status_code=201)


@router.get("/sessions")
def list_sessions(
    warehouse_id: Optional[str] = Query(None),
    status: Optional[CountingStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    rows = counting.list_sessions(db, warehouse_id=warehouse_id,
                                  status=status.value if status else None,
                                  limit=limit)
    return ok([SessionOut.model_validate(s).model_dump() for s in rows])


@router.get("/sessions/active")
def active_session(
    warehouse_id: str = Query(...),
    db: Session = Depends(get_db),
):
    sess = counting.get_active_session(db, warehouse_id)
    return ok(_detail(sess) if sess else None)


@router.get("/sessions/{session_id}")
def get_session(session_id: int, db: Session = Depends(get_db)):
    return ok(_detail(counting.get_session(db, session_id)))


@router.delete("/sessions/{session_id}")
def discard_session(session_id: int, db: Session = Depends(get_db)):
    counting.discard_session(db, session_id)
    db.commit()
    return ok({"id": session_id, "discarded": True})


@router.post("/sessions/{session_id}/pause")
def pause_session(session_id: int, db: Session = Depends(get_db)):
    sess = counting.pause_session(db, session_id)
    db.commit()
    return ok(_detail(sess))


@router.post("/sessions/{session_id}/resume")
def resume_session(
    session_id: int,
    payload: Optional[SessionResumeIn] = None,
    db: Session = Depends(get_db),
):
    sess = counting.resume_session(
        db, session_id, on_conflict=payload.on_conflict if payload else None)
    db.commit()
    return ok(_detail(sess))


@router.post("/sessions/{session_id}/complete")
def complete_session(
    session_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(current_actor),
    adapter=Depends(get_sync_adapter),
):
    sess = counting.complete_session(db, session_id, actor=actor)
    db.commit()
    data = _detail(sess)
    data["summary"] = SummaryOut.model_validate(counting.summarize(sess.items)).model_dump()
    warnings = dispatch_after_commit(db, adapter, background_tasks)
    return ok(data, warnings=warnings)


# =========================
# ITEMS
# =========================
@router.get("/products/search")
def search_products(
    q: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    rows = counting.lookup_products(db, q)
    return ok([CandidateOut.model_validate(p).model_dump() for p in rows])


@router.post("/sessions/{session_id}/items")
def add_item(
    session_id: int,
    payload: ItemAddIn,
    db: Session = Depends(get_db),
):
    res = counting.add_item(
        db,
        session_id,
        query=payload.query,
        product_id=payload.product_id,
        counted_quantity=payload.counted_quantity,
    )
    if res.item is None:
        # ambiguous lookup: let the user pick
        return ok({
            "item": None,
            "already_counted": False,
            "candidates": [CandidateOut.model_validate(p).model_dump() for p in res.candidates],
        })

    db.commit()
    return ok(
        {
            "item": CountingItemOut.model_validate(res.item).model_dump(),
            "already_counted": res.already_counted,
            "candidates": [],
        },
        status_code=200 if res.already_counted else 201,
    )


@router.put("/sessions/{session_id}/items/{item_id}")
def record_count(
    session_id: int,
    item_id: int,
    payload: CountIn,
    db: Session = Depends(get_db),
):
    item = counting.record_count(db, session_id, item_id, payload.counted_quantity)
    db.commit()
    return ok(CountingItemOut.model_validate(item).model_dump())


@router.delete("/sessions/{session_id}/items/{item_id}")
def remove_item(session_id: int, item_id: int, db: Session = Depends(get_db)):
    counting.remove_item(db, session_id, item_id)
    db.commit()
    return ok({"id": item_id, "removed": True})


# =========================
# REPORT
# =========================
@router.get("/sessions/{session_id}/summary")
def session_summary(session_id: int, db: Session = Depends(get_db)):
    sess = counting.get_session(db, session_id)
    return ok(SummaryOut.model_validate(counting.summarize(sess.items)).model_dump())


@router.get("/sessions/{session_id}/export")
def export_session(
    session_id: int,
    format: Literal["csv", "xlsx"] = Query("csv"),
    db: Session = Depends(get_db),
):
    sess = counting.get_session(db, session_id)
    if format == "xlsx":
        content, media = export_xlsx(sess), XLSX_MEDIA
    else:
        content, media = export_csv(sess), "text/csv; charset=utf-8"
    return StreamingResponse(
        BytesIO(content),
        media_type=media,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(sess, format)}"'},
    )
