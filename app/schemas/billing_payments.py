# FILE: app/schemas/billing_payments.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.models.billing import PayMethod
from app.schemas.billing import BillingOut, PaymentOut


class ProcessPaymentIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: PayMethod
    received_by: str = Field(..., min_length=1)

    # cash only
    amount_received: Optional[Decimal] = Field(default=None, ge=0)

    payment_reference: Optional[str] = None
    notes: Optional[str] = None

    # optional adjustments applied in the same transaction
    discount: Optional[Decimal] = Field(default=None, ge=0)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    insurance_coverage: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check(self):
        if self.discount is not None and self.discount_percentage is not None:
            raise ValueError("Give either discount or discount_percentage, not both")
        if self.payment_method == PayMethod.CASH:
            if self.amount_received is None:
                raise ValueError("amount_received is required for cash payments")
            if self.amount_received < self.amount:
                raise ValueError("amount_received must be >= amount")
        return self


class PaymentResultOut(BaseModel):
    billing: BillingOut
    payment: PaymentOut
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: str
    change: Optional[Decimal] = None
