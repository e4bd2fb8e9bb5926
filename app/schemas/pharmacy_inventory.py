# FILE: app/schemas/pharmacy_inventory.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator


# ---------- Stock in / adjust ----------


class StockReceiveIn(BaseModel):
    item_id: str
    batch_number: str = Field(..., min_length=1, max_length=100)
    expiry_date: date
    quantity: int = Field(..., gt=0)
    purchase_price: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    received_at: Optional[datetime] = None
    performed_by: Optional[str] = None

    @field_validator("batch_number")
    @classmethod
    def _strip_batch(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("batch_number must not be blank")
        return v


class StockAdjustIn(BaseModel):
    delta: int = Field(..., description="Signed correction; negative removes stock")
    reason: str = Field(..., min_length=1)
    performed_by: Optional[str] = None

    @field_validator("delta")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("delta must not be 0")
        return v


class ExpiredWriteOffIn(BaseModel):
    item_id: Optional[str] = None
    performed_by: Optional[str] = None


# ---------- Outputs ----------


class BatchOut(BaseModel):
    id: str
    item_id: str
    batch_number: str
    expiry_date: date
    stock_quantity: int
    purchase_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    received_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BatchAlertRow(BaseModel):
    id: str
    batch_number: str
    expiry_date: date
    stock_quantity: int
    supplier: Optional[str] = None
    days_until_expiry: int
    expiry_alert_level: str


class ItemStockOut(BaseModel):
    item_id: str
    item_name: str
    unit: Optional[str] = None
    minimum_stock: int
    total_stock: int
    available_stock: int
    stock_alert_level: str
    needs_reorder: bool
    suggested_reorder_quantity: int
    batches: List[BatchAlertRow]


class StockMovementOut(BaseModel):
    id: str
    batch_id: str
    item_id: str
    movement_type: str
    quantity: int
    balance_after: int
    reason: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
