# stockledger/services/sync/adapter.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None


class ExternalSyncAdapter(Protocol):
    """
    Push target for receiving-type stock changes.

    Implementations return SyncResult for answers from the remote side and
    raise SyncAdapterError (timed_out=True on timeouts) for transport
    failures.
    """

    def push_receiving_delta(self, sku: str, delta: int, new_quantity: int) -> SyncResult:
        ...
