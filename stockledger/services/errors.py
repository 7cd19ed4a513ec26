# stockledger/services/errors.py
from __future__ import annotations

from typing import Any, Optional


class StockError(RuntimeError):
    """
    Base for every domain error raised by the services.
    The API layer turns these into the standard error envelope.
    """
    status_code: int = 400
    code: str = "stock_error"

    def __init__(self, msg: str, *, details: Any = None):
        super().__init__(msg)
        self.msg = msg
        self.details = details


class InvalidMovementError(StockError):
    status_code = 400
    code = "invalid_movement"


class InvalidCountError(StockError):
    status_code = 400
    code = "invalid_count"


class InsufficientStockError(StockError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ConcurrentModificationError(StockError):
    status_code = 409
    code = "concurrent_modification"


class SessionStateError(StockError):
    status_code = 409
    code = "session_state"


class NotFoundError(StockError):
    status_code = 404
    code = "not_found"


class SyncAdapterError(RuntimeError):
    """Transport-level failure talking to the marketplace. Never shown to API clients."""

    def __init__(self, msg: str, *, timed_out: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(msg)
        self.timed_out = timed_out
        self.status_code = status_code
