# FILE: app/models/pharmacy_inventory.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Text, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.db.base import Base, IdMixin

Money = Numeric(14, 2)


# -------------------------
# Enums
# -------------------------
class ItemCategory(str, enum.Enum):
    DRUG = "drug"
    MATERIAL = "material"


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    EXPIRED = "expired"


# -------------------------
# Masters
# -------------------------
class InventoryItem(IdMixin, Base):
    """
    Catalog entry for a drug or a material. Owned by catalog management;
    the engine only reads it (price for billing, minimum stock for alerts).
    """
    __tablename__ = "inv_items"

    code = Column(String(100), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    generic_name = Column(String(255), default="")

    category = Column(String(20), nullable=False, default=ItemCategory.DRUG.value)
    group_name = Column(String(100), default="")  # Antibiotics, Dressings ...
    unit = Column(String(50), nullable=False, default="unit")

    price = Column(Money, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=10)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    batches = relationship("InventoryBatch", back_populates="item")


# -------------------------
# Stock
# -------------------------
class InventoryBatch(IdMixin, Base):
    """
    One receipt lot of an item. stock_quantity is only touched by the
    dispense path, manual adjustments and expiry write-off; rows are never
    deleted, just drained to zero.
    """
    __tablename__ = "inv_batches"
    __table_args__ = (
        UniqueConstraint("item_id", "batch_number", name="uq_inv_batch_item_number"),
        CheckConstraint("stock_quantity >= 0", name="ck_inv_batch_stock_non_negative"),
        Index("ix_inv_batch_item_expiry", "item_id", "expiry_date"),
    )

    item_id = Column(String(36), ForeignKey("inv_items.id"), nullable=False, index=True)

    batch_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)

    purchase_price = Column(Money, nullable=True)
    supplier = Column(String(255), nullable=True)

    # FEFO tie-breaker: earliest received first
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    item = relationship("InventoryItem", back_populates="batches")
    movements = relationship(
        "StockMovement",
        back_populates="batch",
        order_by="StockMovement.created_at",
    )


class StockMovement(IdMixin, Base):
    """
    Append-only stock audit row. quantity is signed:
    positive = stock in, negative = stock out.
    """
    __tablename__ = "inv_stock_movements"
    __table_args__ = (
        Index("ix_inv_movement_batch_created", "batch_id", "created_at"),
        Index("ix_inv_movement_reference", "reference_type", "reference_id"),
    )

    batch_id = Column(String(36), ForeignKey("inv_batches.id"), nullable=False, index=True)
    item_id = Column(String(36), ForeignKey("inv_items.id"), nullable=False, index=True)

    movement_type = Column(String(20), nullable=False)  # in | out | adjustment | expired
    quantity = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False, default=0)

    reason = Column(Text, nullable=True)

    # demand record that caused an "out" movement
    reference_type = Column(String(30), nullable=True)  # prescription | material_usage
    reference_id = Column(String(36), nullable=True)

    performed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    batch = relationship("InventoryBatch", back_populates="movements")
