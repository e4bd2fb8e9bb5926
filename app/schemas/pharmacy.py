# FILE: app/schemas/pharmacy.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.models.pharmacy_prescription import DemandType


class FulfillmentIn(BaseModel):
    """Dispense `quantity` of one demand record from one chosen batch."""

    demand_id: str
    batch_id: str
    quantity: int = Field(..., gt=0)
    performed_by: str = Field(..., min_length=1)
    demand_type: DemandType = DemandType.PRESCRIPTION
    notes: Optional[str] = None

    @field_validator("demand_id", "batch_id", "performed_by")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class BulkFulfillmentIn(BaseModel):
    requests: List[FulfillmentIn]

    @field_validator("requests")
    @classmethod
    def _non_empty(cls, v):
        if not v:
            raise ValueError("at least one fulfillment request is required")
        return v


class AutoDispenseIn(BaseModel):
    """Let FEFO pick the batches."""

    performed_by: str = Field(..., min_length=1)
    demand_type: DemandType = DemandType.PRESCRIPTION
    allow_partial: bool = False
    notes: Optional[str] = None


class AllocationOut(BaseModel):
    batch_id: str
    batch_number: str
    expiry_date: str
    quantity: int

    @classmethod
    def from_allocation(cls, a) -> "AllocationOut":
        return cls(batch_id=a.batch.id,
                   batch_number=a.batch.batch_number,
                   expiry_date=a.batch.expiry_date.isoformat(),
                   quantity=a.quantity)


class AllocationPreviewOut(BaseModel):
    item_id: str
    required_quantity: int
    allocated_quantity: int
    is_complete: bool
    allocations: List[AllocationOut]


class DemandRecordOut(BaseModel):
    id: str
    item_id: str
    quantity: int
    is_fulfilled: bool
    dispensed_quantity: Optional[int] = None
    batch_id: Optional[str] = None
    fulfilled_by: Optional[str] = None
    fulfilled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AutoDispenseOut(BaseModel):
    record: DemandRecordOut
    allocations: List[AllocationOut]
