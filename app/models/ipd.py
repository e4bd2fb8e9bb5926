# FILE: app/models/ipd.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Numeric,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, IdMixin
from app.models.pharmacy_prescription import DemandType, FulfillmentMixin

Money = Numeric(14, 2)


class Room(IdMixin, Base):
    __tablename__ = "ipd_rooms"

    room_number = Column(String(20), unique=True, nullable=False)
    room_type = Column(String(50), nullable=False, default="ward")  # VIP, class 1, ward ...
    bed_count = Column(Integer, nullable=False, default=1)
    daily_rate = Column(Money, nullable=False, default=0)

    assignments = relationship("BedAssignment", back_populates="room")


class BedAssignment(IdMixin, Base):
    """
    One stay in one bed. A transfer closes the current row and opens a new one,
    so an encounter can have several.
    """
    __tablename__ = "ipd_bed_assignments"

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False, index=True)
    room_id = Column(String(36), ForeignKey("ipd_rooms.id"), nullable=False, index=True)
    bed_number = Column(String(10), nullable=False, default="1")

    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    discharged_at = Column(DateTime, nullable=True)

    encounter = relationship("Visit", back_populates="bed_assignments")
    room = relationship("Room", back_populates="assignments")


class MaterialUsage(IdMixin, FulfillmentMixin, Base):
    """
    Material consumed by nursing for an inpatient. unit_price / total_price
    are snapshots taken at time of use; billing never re-reads the catalog.
    """
    __tablename__ = "ipd_material_usage"

    demand_type = DemandType.MATERIAL_USAGE

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False, index=True)

    material_name = Column(String(255), nullable=True)
    unit = Column(String(50), nullable=True)
    unit_price = Column(Money, nullable=False, default=0)
    total_price = Column(Money, nullable=False, default=0)

    used_by = Column(String(64), nullable=True)
    used_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    encounter = relationship("Visit", back_populates="material_usages")
