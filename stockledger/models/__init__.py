# stockledger/models/__init__.py
from .product import Product
from .stock_batch import StockBatch
from .stock_movement import (
    MovementDirection,
    MovementType,
    StockMovement,
    StockMovementAllocation,
)
from .counting import CountingItem, CountingSession, CountingStatus
from .sync_event import SyncEvent, SyncStatus

__all__ = [
    "Product",
    "StockBatch",
    "MovementDirection",
    "MovementType",
    "StockMovement",
    "StockMovementAllocation",
    "CountingItem",
    "CountingSession",
    "CountingStatus",
    "SyncEvent",
    "SyncStatus",
]
