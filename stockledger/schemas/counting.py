# stockledger/schemas/counting.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stockledger.models.counting import CountingStatus

ConflictAction = Literal["pause", "discard"]


class SessionStartIn(BaseModel):
    warehouse_id: str = Field(..., min_length=1, max_length=50)
    session_name: Optional[str] = Field(None, max_length=255)
    on_conflict: Optional[ConflictAction] = None


class SessionResumeIn(BaseModel):
    on_conflict: Optional[ConflictAction] = None


class ItemAddIn(BaseModel):
    query: Optional[str] = Field(None, description="Barcode, SKU or part of the name")
    product_id: Optional[int] = None
    counted_quantity: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def _need_lookup(self):
        if self.product_id is None and not (self.query or "").strip():
            raise ValueError("either query or product_id is required")
        return self


class CountIn(BaseModel):
    counted_quantity: int = Field(..., ge=0)


class CountingItemOut(BaseModel):
    id: int
    product_id: int
    position: int
    barcode: Optional[str] = None
    sku: Optional[str] = None
    name: str
    name_en: Optional[str] = None
    unit_of_measure: Optional[str] = None
    system_quantity: int
    counted_quantity: int
    difference: int
    cost_price: Decimal
    value_difference: Decimal
    movement_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class SessionOut(BaseModel):
    id: int
    warehouse_id: str
    session_name: str
    status: CountingStatus
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionDetailOut(SessionOut):
    items: List[CountingItemOut] = []


class CandidateOut(BaseModel):
    id: int
    sku: Optional[str] = None
    barcode: Optional[str] = None
    name: str
    name_en: Optional[str] = None
    unit_of_measure: str
    stock_quantity: int

    model_config = ConfigDict(from_attributes=True)


class SummaryOut(BaseModel):
    total_items: int
    matched_items: int
    unmatched_items: int
    total_value_difference: Decimal
    overstock_items: List[CountingItemOut]
    understock_items: List[CountingItemOut]

    model_config = ConfigDict(from_attributes=True)
