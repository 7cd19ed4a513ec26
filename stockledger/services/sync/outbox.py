# stockledger/services/sync/outbox.py
"""
Post-commit outbox for marketplace sync.

Receiving movements queue a SyncEvent in the ledger transaction. Once that
transaction has committed the events are pushed to the adapter with a
bounded number of attempts. A sync failure never touches the ledger: the
event is marked failed/degraded and a warning is handed back to the caller.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.models.product import Product
from stockledger.models.stock_movement import StockMovement
from stockledger.models.sync_event import SyncEvent, SyncStatus
from stockledger.services.errors import SyncAdapterError
from stockledger.services.sync.adapter import ExternalSyncAdapter
from stockledger.utils.timezone import now_local

logger = logging.getLogger(__name__)

_ENQUEUED_KEY = "stockledger.sync_event_ids"


# -------------------------
# Enqueue (inside the ledger transaction)
# -------------------------
def enqueue_sync_event(db: Session, product: Product,
                       movement: StockMovement) -> Optional[SyncEvent]:
    if not settings.SYNC_ENABLED:
        return None

    ev = SyncEvent(
        movement_id=movement.id,
        product_id=product.id,
        sku=product.sync_sku,
        delta=movement.quantity,
        new_quantity=movement.quantity_after,
        status=SyncStatus.PENDING,
        attempts=0,
    )
    db.add(ev)
    db.flush()
    db.info.setdefault(_ENQUEUED_KEY, []).append(ev.id)
    return ev


def take_enqueued(db: Session) -> List[int]:
    """Event ids queued on this session since the last call."""
    return db.info.pop(_ENQUEUED_KEY, [])


# -------------------------
# Dispatch (after commit)
# -------------------------
def dispatch_event(
    db: Session,
    adapter: ExternalSyncAdapter,
    ev: SyncEvent,
    *,
    max_retries: Optional[int] = None,
    backoff: Optional[float] = None,
) -> Optional[str]:
    """
    Push one event. Returns a warning message unless it synced.

    `new_quantity` is refreshed from the product before sending, so a
    re-dispatched older event cannot overwrite a newer total.
    """
    max_retries = settings.SYNC_MAX_RETRIES if max_retries is None else max_retries
    backoff = settings.SYNC_BACKOFF_SECONDS if backoff is None else backoff
    tries = 1 + max(0, max_retries)

    # the marketplace replaces its quantity, so always send the live total
    product = db.get(Product, ev.product_id, populate_existing=True)
    ev.new_quantity = product.stock_quantity or 0

    error = "not attempted"
    for attempt in range(1, tries + 1):
        ev.attempts = (ev.attempts or 0) + 1
        try:
            result = adapter.push_receiving_delta(ev.sku, ev.delta, ev.new_quantity)
        except SyncAdapterError as e:
            if e.timed_out:
                # abandoned, retry manually from the sync dashboard
                ev.status = SyncStatus.DEGRADED
                ev.last_error = str(e)
                logger.error("sync event #%s for %s degraded: %s", ev.id, ev.sku, e)
                return f"Marketplace sync for {ev.sku} timed out; stock there may be stale"
            error = str(e)
        except Exception as e:
            logger.exception("sync event #%s: unexpected adapter error", ev.id)
            error = f"unexpected adapter error: {e}"
            break
        else:
            if result.success:
                ev.status = SyncStatus.SYNCED
                ev.last_error = None
                ev.synced_at = now_local()
                logger.info("sync event #%s synced: %s -> %s", ev.id, ev.sku, ev.new_quantity)
                return None
            error = result.error or "rejected by marketplace"

        logger.warning("sync event #%s attempt %s/%s failed: %s", ev.id, attempt, tries, error)
        if attempt < tries and backoff > 0:
            time.sleep(backoff * attempt)

    ev.status = SyncStatus.FAILED
    ev.last_error = error
    return f"Marketplace sync failed for {ev.sku}: {error}"


def dispatch_events(
    db: Session,
    adapter: ExternalSyncAdapter,
    event_ids: Optional[Sequence[int]] = None,
    **kwargs,
) -> List[str]:
    """Dispatch pending events (all of them when `event_ids` is None)."""
    q = db.query(SyncEvent).filter(SyncEvent.status == SyncStatus.PENDING)
    if event_ids is not None:
        if not event_ids:
            return []
        q = q.filter(SyncEvent.id.in_(list(event_ids)))

    warnings: List[str] = []
    for ev in q.order_by(SyncEvent.id.asc()).all():
        warning = dispatch_event(db, adapter, ev, **kwargs)
        db.flush()
        if warning:
            warnings.append(warning)
    return warnings


def run_background_dispatch(
    event_ids: Sequence[int],
    adapter: ExternalSyncAdapter,
    session_factory: Optional[Callable[[], Session]] = None,
) -> None:
    if session_factory is None:
        from stockledger.db.session import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        dispatch_events(db, adapter, event_ids)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("background sync dispatch failed for events %s", list(event_ids))
    finally:
        db.close()


def dispatch_after_commit(
    db: Session,
    adapter: Optional[ExternalSyncAdapter],
    background_tasks=None,
) -> List[str]:
    """
    Call right after committing a ledger transaction.
    Inline mode returns warnings for the response; background mode hands
    the events to FastAPI BackgroundTasks and returns nothing.
    """
    ids = take_enqueued(db)
    if not ids or adapter is None:
        return []

    if settings.SYNC_DISPATCH == "background" and background_tasks is not None:
        background_tasks.add_task(run_background_dispatch, ids, adapter)
        return []

    warnings = dispatch_events(db, adapter, ids)
    db.commit()
    return warnings


# -------------------------
# Dashboard
# -------------------------
def list_events(db: Session, *, status: Optional[str] = None,
                limit: int = 100) -> List[SyncEvent]:
    q = db.query(SyncEvent)
    if status:
        q = q.filter(SyncEvent.status == SyncStatus(status))
    return q.order_by(SyncEvent.id.desc()).limit(limit).all()


def retry_events(
    db: Session,
    adapter: ExternalSyncAdapter,
    event_ids: Optional[Sequence[int]] = None,
    **kwargs,
) -> Tuple[List[SyncEvent], List[str]]:
    """Re-queue failed/degraded events (all of them, or the given ids) and push again."""
    q = db.query(SyncEvent).filter(
        SyncEvent.status.in_([SyncStatus.FAILED, SyncStatus.DEGRADED]))
    if event_ids:
        q = q.filter(SyncEvent.id.in_(list(event_ids)))
    events = q.order_by(SyncEvent.id.asc()).all()

    for ev in events:
        ev.status = SyncStatus.PENDING
    db.flush()

    warnings = dispatch_events(db, adapter, [ev.id for ev in events], **kwargs)
    return events, warnings
