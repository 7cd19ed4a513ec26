# stockledger/schemas/sync.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from stockledger.models.sync_event import SyncStatus


class SyncEventOut(BaseModel):
    id: int
    movement_id: int
    product_id: int
    sku: str
    delta: int
    new_quantity: int
    status: SyncStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    synced_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SyncRetryIn(BaseModel):
    event_ids: Optional[List[int]] = None
