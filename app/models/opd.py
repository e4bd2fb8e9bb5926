# FILE: app/models/opd.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base, IdMixin


class VisitType(str, enum.Enum):
    OUTPATIENT = "outpatient"
    INPATIENT = "inpatient"
    EMERGENCY = "emergency"


class Visit(IdMixin, Base):
    """
    Encounter owned by visit management. The billing engine only reads it:
    one Billing per Visit.
    """
    __tablename__ = "visits"

    visit_number = Column(String(50), unique=True, nullable=True, index=True)
    visit_type = Column(String(20), nullable=False, default=VisitType.OUTPATIENT.value)
    status = Column(String(20), nullable=False, default="registered")

    patient_name = Column(String(255), nullable=True)
    patient_mr_number = Column(String(50), nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    prescriptions = relationship("Prescription", back_populates="encounter")
    procedures = relationship("Procedure", back_populates="encounter")
    material_usages = relationship("MaterialUsage", back_populates="encounter")
    bed_assignments = relationship(
        "BedAssignment",
        back_populates="encounter",
        order_by="BedAssignment.assigned_at",
    )
    lab_orders = relationship("LabOrder", back_populates="encounter")
    billing = relationship("Billing", back_populates="encounter", uselist=False)


class Procedure(IdMixin, Base):
    """Procedure recorded on the medical record; priced via the service catalog by code."""
    __tablename__ = "emr_procedures"

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False, index=True)

    code = Column(String(50), nullable=True, index=True)  # ICD-9-CM
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="completed")

    performed_by = Column(String(64), nullable=True)
    performed_at = Column(DateTime, default=datetime.utcnow, nullable=True)

    encounter = relationship("Visit", back_populates="procedures")
