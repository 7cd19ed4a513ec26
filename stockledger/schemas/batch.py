# stockledger/schemas/batch.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal


class BatchIn(BaseModel):
    product_id: int
    batch_number: str = Field(..., min_length=1, max_length=100)
    lot_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None
    quantity: int = Field(..., gt=0)
    supplier: Optional[str] = Field(None, max_length=255)
    cost_per_unit: Optional[condecimal(max_digits=14, decimal_places=4, ge=0)] = None


class BatchOut(BaseModel):
    id: int
    product_id: int
    batch_number: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    quantity: int
    received_quantity: int
    supplier: Optional[str] = None
    cost_per_unit: Decimal
    is_active: bool
    created_at: datetime

    # derived
    days_until_expiry: Optional[int] = None
    expiry_status: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ExpiryUpdateIn(BaseModel):
    batch_ids: List[int] = Field(..., min_length=1)
    expiry_date: Optional[date] = None


class WriteOffIn(BaseModel):
    movement_type: Literal["expired", "damaged", "supplier_return"] = "expired"
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
