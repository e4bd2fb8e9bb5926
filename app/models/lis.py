# FILE: app/models/lis.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base, IdMixin


class LabOrder(IdMixin, Base):
    """Lab order as seen by billing: only verified orders are charged, at the order price."""
    __tablename__ = "lis_orders"

    encounter_id = Column(String(36), ForeignKey("visits.id"), nullable=False, index=True)

    order_number = Column(String(50), nullable=True, index=True)
    test_code = Column(String(50), nullable=True)
    test_name = Column(String(255), nullable=True)
    price = Column(Numeric(14, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default="ordered")  # ordered | in_progress | verified | cancelled
    ordered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    encounter = relationship("Visit", back_populates="lab_orders")
