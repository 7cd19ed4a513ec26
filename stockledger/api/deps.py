# stockledger/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.db.session import SessionLocal
from stockledger.services.sync.adapter import ExternalSyncAdapter
from stockledger.services.sync.marketplace import MarketplaceSyncAdapter


# =========================================================
# DB
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =========================================================
# ACTOR
# =========================================================
def current_actor(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Opaque id of the acting user; authentication happens upstream."""
    return (x_user_id or "").strip() or None


# =========================================================
# MARKETPLACE SYNC
# =========================================================
_adapter: Optional[MarketplaceSyncAdapter] = None


def get_sync_adapter() -> Optional[ExternalSyncAdapter]:
    global _adapter
    if not settings.SYNC_ENABLED:
        return None
    if _adapter is None:
        _adapter = MarketplaceSyncAdapter.from_settings()
    return _adapter
