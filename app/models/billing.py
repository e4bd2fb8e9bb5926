# FILE: app/models/billing.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    Index,
    ForeignKey,
    UniqueConstraint,
    Text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, IdMixin

Money = Numeric(14, 2)


class BillingItemType(str, enum.Enum):
    SERVICE = "service"
    DRUG = "drug"
    MATERIAL = "material"
    ROOM = "room"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PayMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"
    INSURANCE = "insurance"


class Service(IdMixin, Base):
    """
    Priced service catalog (read-only for the engine).

    service_type picks how billing uses a row:
      - administration / consultation -> fixed fee, once per encounter
      - procedure -> matched to Procedure.code
    """
    __tablename__ = "billing_services"

    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    service_type = Column(String(50), nullable=False, index=True)
    price = Column(Money, nullable=False, default=0)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Billing(IdMixin, Base):
    """
    The one bill of an encounter.

    Cached totals always satisfy:
      total_amount     = subtotal - discount + tax
      patient_payable  = total_amount - insurance_coverage
      remaining_amount = patient_payable - paid_amount
    and payment_status is derived from (paid_amount, patient_payable).
    """
    __tablename__ = "billings"
    __table_args__ = (
        UniqueConstraint("encounter_id", name="uq_billings_encounter"),
        Index("ix_billings_status_created", "payment_status", "created_at"),
    )

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False)

    subtotal = Column(Money, nullable=False, default=0)
    discount = Column(Money, nullable=False, default=0)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    tax = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=0)

    insurance_coverage = Column(Money, nullable=False, default=0)
    patient_payable = Column(Money, nullable=False, default=0)

    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    paid_amount = Column(Money, nullable=False, default=0)
    remaining_amount = Column(Money, nullable=False, default=0)

    # last payment
    payment_method = Column(String(20), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    processed_by = Column(String(64), nullable=True)
    processed_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    encounter = relationship("Visit", back_populates="billing")
    items = relationship(
        "BillingItem",
        back_populates="billing",
        cascade="all, delete-orphan",
        order_by="BillingItem.seq",
    )
    payments = relationship(
        "Payment",
        back_populates="billing",
        order_by="Payment.received_at",
    )


class BillingItem(IdMixin, Base):
    __tablename__ = "billing_items"

    billing_id = Column(String(36), ForeignKey("billings.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False, default=0)

    item_type = Column(String(20), nullable=False)  # service | drug | material | room
    item_ref_id = Column(String(36), nullable=True)  # service / prescription / usage / room id
    item_name = Column(String(255), nullable=False)
    item_code = Column(String(50), nullable=True)
    # breakdown bucket; "manual" rows were added by hand and survive recomputes
    category = Column(String(20), nullable=False, default="service")

    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False)
    subtotal = Column(Money, nullable=False)  # quantity * unit_price
    discount = Column(Money, nullable=False, default=0)
    total_price = Column(Money, nullable=False)  # subtotal - discount

    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    billing = relationship("Billing", back_populates="items")


class Payment(IdMixin, Base):
    """Append-only settlement row. Sum of amounts == Billing.paid_amount."""
    __tablename__ = "billing_payments"

    billing_id = Column(String(36), ForeignKey("billings.id"), nullable=False, index=True)
    receipt_number = Column(String(32), unique=True, nullable=True, index=True)

    amount = Column(Money, nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_reference = Column(String(100), nullable=True)

    # cash only
    amount_received = Column(Money, nullable=True)
    change_given = Column(Money, nullable=True)

    received_by = Column(String(64), nullable=False)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    billing = relationship("Billing", back_populates="payments")


class NumberSeries(IdMixin, Base):
    """Daily document counters (receipt numbers)."""
    __tablename__ = "billing_number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_billing_number_series_key_date"),
    )

    key = Column(String(30), nullable=False)  # RCP
    date_key = Column(Integer, nullable=False)  # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
