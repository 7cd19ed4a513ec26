# stockledger/services/sync/marketplace.py
"""
HTTP client for the online marketplace (ZortOut open API).

Only what the ledger needs: look a product up by SKU and set its stock.
The marketplace's UpdateStock call replaces the quantity, so receipts send
the new total rather than the delta.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from stockledger.core.config import settings
from stockledger.services.errors import SyncAdapterError
from stockledger.services.sync.adapter import SyncResult

logger = logging.getLogger(__name__)


def _is_success(payload: Dict[str, Any]) -> bool:
    return payload.get("res") == 200 or str(payload.get("resCode", "")) == "200"


class MarketplaceSyncAdapter:

    def __init__(
        self,
        base_url: str,
        store_name: str,
        api_key: str,
        api_secret: str,
        *,
        timeout: float = 10.0,
        warehouse_id: Optional[str] = None,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.store_name = store_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self.warehouse_id = warehouse_id or None
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls) -> "MarketplaceSyncAdapter":
        return cls(
            settings.SYNC_BASE_URL,
            settings.SYNC_STORE_NAME,
            settings.SYNC_API_KEY,
            settings.SYNC_API_SECRET,
            timeout=settings.SYNC_TIMEOUT_SECONDS,
            warehouse_id=settings.SYNC_WAREHOUSE_ID,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "storename": self.store_name,
            "apikey": self.api_key,
            "apisecret": self.api_secret,
        }

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, headers=self._headers(),
                                     timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise SyncAdapterError(f"{method} {path} timed out after {self.timeout}s",
                                   timed_out=True) from e
        except requests.RequestException as e:
            raise SyncAdapterError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            raise SyncAdapterError(
                f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise SyncAdapterError(f"{method} {path} returned invalid JSON") from e

    def get_product_by_sku(self, sku: str) -> Optional[Dict[str, Any]]:
        data = self._request("GET", "/Product/GetProductBySku", params={"sku": sku})
        rows = data.get("list") or []
        return rows[0] if rows else None

    def update_stock(self, product_id: int, quantity: int) -> Dict[str, Any]:
        body: Dict[str, Any] = {"productid": product_id, "quantity": quantity}
        if self.warehouse_id:
            body["warehouseid"] = self.warehouse_id
        return self._request("POST", "/Product/UpdateStock", json=body)

    def push_receiving_delta(self, sku: str, delta: int, new_quantity: int) -> SyncResult:
        product = self.get_product_by_sku(sku)
        if not product:
            return SyncResult(False, f"Product with SKU {sku} not found in marketplace")

        result = self.update_stock(product["id"], new_quantity)
        if not _is_success(result):
            return SyncResult(False, result.get("resDesc") or "Failed to update stock")

        logger.debug("marketplace stock for %s set to %s (%+d)", sku, new_quantity, delta)
        return SyncResult(True)
