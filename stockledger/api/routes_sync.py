# stockledger/api/routes_sync.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.api.deps import get_db, get_sync_adapter
from stockledger.api.response import err, ok
from stockledger.models.sync_event import SyncStatus
from stockledger.schemas.sync import SyncEventOut, SyncRetryIn
from stockledger.services.sync import outbox

router = APIRouter(prefix="/sync", tags=["Marketplace Sync"])


@router.get("/events")
def list_events(
    status: Optional[SyncStatus] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    rows = outbox.list_events(db, status=status.value if status else None, limit=limit)
    return ok([SyncEventOut.model_validate(e).model_dump() for e in rows])


@router.post("/events/retry")
def retry_events(
    payload: Optional[SyncRetryIn] = None,
    db: Session = Depends(get_db),
    adapter=Depends(get_sync_adapter),
):
    if adapter is None:
        return err("Marketplace sync is disabled", status_code=409, code="sync_disabled")

    events, warnings = outbox.retry_events(db, adapter, payload.event_ids if payload else None)
    db.commit()
    return ok([SyncEventOut.model_validate(e).model_dump() for e in events], warnings=warnings)
