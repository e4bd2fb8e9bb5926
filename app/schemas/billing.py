# FILE: app/schemas/billing.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from app.models.billing import BillingItemType


class ExtraBillingItemIn(BaseModel):
    """Manual line added at creation (e.g. a service not on the medical record)."""

    item_type: BillingItemType = BillingItemType.SERVICE
    item_name: str = Field(..., min_length=1)
    item_code: Optional[str] = None
    item_ref_id: Optional[str] = None
    quantity: int = Field(1, gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    description: Optional[str] = None


class _Adjustments(BaseModel):
    discount: Optional[Decimal] = Field(default=None, ge=0)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    insurance_coverage: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _one_discount_kind(self):
        if self.discount is not None and self.discount_percentage is not None:
            raise ValueError("Give either discount or discount_percentage, not both")
        return self


class BillingCreateIn(_Adjustments):
    created_by: Optional[str] = None
    notes: Optional[str] = None
    items: List[ExtraBillingItemIn] = Field(default_factory=list)


class BillingRecomputeIn(_Adjustments):
    created_by: Optional[str] = None
    notes: Optional[str] = None


# ---------- Outputs ----------


class BillingItemOut(BaseModel):
    id: str
    seq: int
    item_type: str
    item_ref_id: Optional[str] = None
    item_name: str
    item_code: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount: Decimal
    total_price: Decimal
    description: Optional[str] = None
    category: str = "service"

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: str
    receipt_number: Optional[str] = None
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    amount_received: Optional[Decimal] = None
    change_given: Optional[Decimal] = None
    received_by: str
    received_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BillingOut(BaseModel):
    id: str
    encounter_id: str
    subtotal: Decimal
    discount: Decimal
    discount_percentage: Optional[Decimal] = None
    tax: Decimal
    total_amount: Decimal
    insurance_coverage: Decimal
    patient_payable: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BillingDetailOut(BillingOut):
    items: List[BillingItemOut] = Field(default_factory=list)
    payments: List[PaymentOut] = Field(default_factory=list)


class BillingLineOut(BaseModel):
    item_type: str
    item_ref_id: Optional[str] = None
    item_name: str
    item_code: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount: Decimal
    total_price: Decimal
    description: Optional[str] = None
    category: str

    model_config = ConfigDict(from_attributes=True)


class BreakdownRow(BaseModel):
    total: Decimal
    count: int


class BillingPreviewOut(BaseModel):
    encounter_id: str
    visit_type: str
    items: List[BillingLineOut]
    subtotal: Decimal
    breakdown: Dict[str, BreakdownRow]


class BillingStatsOut(BaseModel):
    total_billings: int
    pending: int
    partial: int
    paid: int
    total_revenue: Decimal
    pending_revenue: Decimal
    collected_today: Decimal


class DischargeCheckOut(BaseModel):
    encounter_id: str
    allowed: bool
    reason: Optional[str] = None
    payment_status: Optional[str] = None
    remaining_amount: Optional[Decimal] = None
