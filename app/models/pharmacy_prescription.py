# FILE: app/models/pharmacy_prescription.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Boolean,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship, declared_attr

from app.db.base import Base, IdMixin


class DemandType(str, enum.Enum):
    PRESCRIPTION = "prescription"
    MATERIAL_USAGE = "material_usage"


class FulfillmentMixin:
    """
    Columns shared by every demand record (a need for stock).

    is_fulfilled only ever goes False -> True. Once set, the fulfillment
    columns (batch, dispensed qty, who, when) are frozen.
    """

    quantity = Column(Integer, nullable=False)

    is_fulfilled = Column(Boolean, nullable=False, default=False, index=True)
    dispensed_quantity = Column(Integer, nullable=True)
    fulfilled_by = Column(String(64), nullable=True)
    fulfilled_at = Column(DateTime, nullable=True)
    fulfillment_notes = Column(Text, nullable=True)

    @declared_attr
    def item_id(cls):
        return Column(String(36), ForeignKey("inv_items.id"), nullable=False, index=True)

    # FEFO dispenses spanning several batches keep only the earliest-expiring
    # one here; `dispense_movements` lists every batch from the "out" movements
    @declared_attr
    def batch_id(cls):
        return Column(String(36), ForeignKey("inv_batches.id"), nullable=True)

    @declared_attr
    def item(cls):
        return relationship("InventoryItem")

    @declared_attr
    def batch(cls):
        return relationship("InventoryBatch")


class Prescription(IdMixin, FulfillmentMixin, Base):
    """
    Prescription line written by a doctor for one encounter.
    `quantity` is what was prescribed (and what gets billed).
    """

    __tablename__ = "pharmacy_prescriptions"
    __table_args__ = (
        Index("ix_pharmacy_rx_fulfilled_created", "is_fulfilled", "created_at"),
    )

    demand_type = DemandType.PRESCRIPTION

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False, index=True)

    dosage = Column(String(100), nullable=True)  # 500mg
    frequency = Column(String(100), nullable=False, default="")  # 3x daily
    duration = Column(String(100), nullable=True)
    route = Column(String(50), nullable=True)
    instructions = Column(Text, nullable=True)

    prescribed_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    encounter = relationship("Visit", back_populates="prescriptions")
