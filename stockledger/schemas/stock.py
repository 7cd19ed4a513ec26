# stockledger/schemas/stock.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal

from stockledger.models.stock_movement import MovementType

Cost = condecimal(max_digits=14, decimal_places=4, ge=0)


# ---------- Products ----------


class ProductOut(BaseModel):
    id: int
    sku: Optional[str] = None
    barcode: Optional[str] = None
    name: str
    name_en: Optional[str] = None
    unit_of_measure: str
    stock_quantity: int
    min_stock_level: int
    reorder_point: int
    cost_price: Decimal
    is_active: bool
    version: int
    status: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ---------- Movements ----------


class MovementIn(BaseModel):
    product_id: int
    movement_type: MovementType
    quantity: int = Field(..., description="Signed delta; sign must match the movement type")
    reason: str = Field("", max_length=255)
    notes: Optional[str] = None
    batch_id: Optional[int] = None
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=64)
    unit_cost: Optional[Cost] = None
    movement_date: Optional[datetime] = None
    expected_version: Optional[int] = None


class OpeningBalanceIn(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    unit_cost: Optional[Cost] = None
    effective_date: Optional[date] = None
    notes: Optional[str] = None


class MovementOut(BaseModel):
    id: int
    product_id: int
    batch_id: Optional[int] = None
    movement_type: MovementType
    quantity: int
    quantity_before: int
    quantity_after: int
    unit_cost: Decimal
    total_cost: Decimal
    reason: str
    notes: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    movement_date: datetime
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Reports ----------


class LedgerIssueOut(BaseModel):
    product_id: int
    stock_quantity: int
    ledger_sum: int
    issues: List[str]
