# FILE: app/services/inventory.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    BatchAlreadyExists,
    InsufficientStock,
    InvalidQuantity,
    InvalidStockAdjustment,
    NotFound,
)
from app.db.session import atomic
from app.models.pharmacy_inventory import (
    InventoryBatch,
    InventoryItem,
    MovementType,
    StockMovement,
)
from app.utils.timezone import today_local

logger = logging.getLogger(__name__)


def create_stock_movement(
    db: Session,
    *,
    batch: InventoryBatch,
    movement_type: MovementType,
    qty_delta: int,
    balance_after: int,
    reason: str = "",
    reference_type: str | None = None,
    reference_id: str | None = None,
    performed_by: str | None = None,
) -> StockMovement:
    """
    Central creator for StockMovement – always use this so audit is consistent.
    """
    mv = StockMovement(
        batch_id=batch.id,
        item_id=batch.item_id,
        movement_type=movement_type.value,
        quantity=int(qty_delta),
        balance_after=int(balance_after),
        reason=reason or None,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by=performed_by,
    )
    db.add(mv)
    return mv


def get_item_or_404(db: Session, item_id: str) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if not item:
        raise NotFound(f"Inventory item {item_id} not found")
    return item


def get_batch_or_404(db: Session, batch_id: str, *, lock: bool = False) -> InventoryBatch:
    stmt = select(InventoryBatch).where(InventoryBatch.id == batch_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    batch = db.execute(stmt).scalar_one_or_none()
    if not batch:
        raise NotFound(f"Inventory batch {batch_id} not found")
    return batch


def deduct_batch_stock(db: Session, batch: InventoryBatch, qty: int) -> int:
    """
    Atomic conditional decrement:
        UPDATE inv_batches SET stock_quantity = stock_quantity - :qty
        WHERE id = :batch AND stock_quantity >= :qty
    Zero rows touched means someone else drained the batch first.
    Returns the new balance. Does not commit.
    """
    res = db.execute(
        update(InventoryBatch)
        .where(and_(
            InventoryBatch.id == batch.id,
            InventoryBatch.stock_quantity >= qty,
        ))
        .values(
            stock_quantity=InventoryBatch.stock_quantity - qty,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(batch)
    if res.rowcount != 1:
        raise InsufficientStock(
            f"Insufficient stock in batch {batch.batch_number}. "
            f"Available: {batch.stock_quantity}, Requested: {qty}",
            available=batch.stock_quantity,
            requested=qty,
            batch_id=batch.id,
        )
    return batch.stock_quantity


# ---------- Stock in ----------


def receive_stock(
    db: Session,
    *,
    item_id: str,
    batch_number: str,
    expiry_date: date,
    quantity: int,
    purchase_price: Decimal | None = None,
    supplier: str | None = None,
    received_at: datetime | None = None,
    performed_by: str | None = None,
) -> InventoryBatch:
    """New batch + its "in" movement, one transaction."""
    if quantity is None or int(quantity) <= 0:
        raise InvalidQuantity(f"Received quantity must be > 0 (got {quantity})")

    with atomic(db):
        get_item_or_404(db, item_id)

        dup = db.execute(
            select(InventoryBatch.id).where(and_(
                InventoryBatch.item_id == item_id,
                InventoryBatch.batch_number == batch_number,
            ))).first()
        if dup:
            raise BatchAlreadyExists(
                f"Batch {batch_number} already exists for item {item_id}")

        batch = InventoryBatch(
            item_id=item_id,
            batch_number=batch_number,
            expiry_date=expiry_date,
            stock_quantity=int(quantity),
            purchase_price=purchase_price,
            supplier=supplier,
            received_at=received_at or datetime.utcnow(),
        )
        db.add(batch)
        create_stock_movement(
            db,
            batch=batch,
            movement_type=MovementType.IN,
            qty_delta=int(quantity),
            balance_after=int(quantity),
            reason="New stock received",
            performed_by=performed_by,
        )
        try:
            db.flush()
        except IntegrityError:
            # lost a race with another receipt of the same batch number
            raise BatchAlreadyExists(
                f"Batch {batch_number} already exists for item {item_id}")

    logger.info("Stock received: item=%s batch=%s qty=%s", item_id,
                batch_number, quantity)
    db.refresh(batch)
    return batch


# ---------- Manual adjustment ----------


def adjust_stock(
    db: Session,
    *,
    batch_id: str,
    delta: int,
    reason: str,
    performed_by: str | None = None,
) -> InventoryBatch:
    """
    Signed manual correction (stock take, breakage ...).
    Rejects any result below zero.
    """
    delta = int(delta)
    if delta == 0:
        raise InvalidStockAdjustment("Adjustment quantity must not be 0")
    if not (reason or "").strip():
        raise InvalidStockAdjustment("Adjustment reason is required")

    with atomic(db):
        batch = get_batch_or_404(db, batch_id, lock=True)
        current = int(batch.stock_quantity or 0)
        new_qty = current + delta
        if new_qty < 0:
            raise InvalidStockAdjustment(
                f"Stock cannot be negative for batch {batch.batch_number}. "
                f"Current: {current}, Adjustment: {delta}",
                current=current,
                delta=delta,
            )

        if delta < 0:
            new_qty = deduct_batch_stock(db, batch, -delta)
        else:
            db.execute(
                update(InventoryBatch)
                .where(InventoryBatch.id == batch.id)
                .values(
                    stock_quantity=InventoryBatch.stock_quantity + delta,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False))
            db.refresh(batch)
            new_qty = batch.stock_quantity

        create_stock_movement(
            db,
            batch=batch,
            movement_type=MovementType.ADJUSTMENT,
            qty_delta=delta,
            balance_after=new_qty,
            reason=reason.strip(),
            performed_by=performed_by,
        )

    logger.info("Stock adjusted: batch=%s delta=%s new=%s", batch_id, delta,
                new_qty)
    db.refresh(batch)
    return batch


# ---------- Expiry write-off ----------


def write_off_expired(
    db: Session,
    *,
    item_id: str | None = None,
    today: date | None = None,
    performed_by: str | None = None,
) -> List[StockMovement]:
    """
    Drain every expired batch that still holds stock, one "expired"
    movement per batch. Returns the movements written.
    """
    today = today or today_local()
    written: List[StockMovement] = []

    with atomic(db):
        stmt = (
            select(InventoryBatch)
            .where(and_(
                InventoryBatch.expiry_date < today,
                InventoryBatch.stock_quantity > 0,
            ))
            .order_by(InventoryBatch.expiry_date.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if item_id:
            stmt = stmt.where(InventoryBatch.item_id == item_id)

        for batch in db.execute(stmt).scalars().all():
            qty = int(batch.stock_quantity)
            deduct_batch_stock(db, batch, qty)
            written.append(
                create_stock_movement(
                    db,
                    batch=batch,
                    movement_type=MovementType.EXPIRED,
                    qty_delta=-qty,
                    balance_after=0,
                    reason=f"Expired on {batch.expiry_date.isoformat()}",
                    performed_by=performed_by,
                ))

    if written:
        logger.info("Expired stock written off: %d batch(es)", len(written))
    return written


# ---------- Reads ----------


def get_batches_for_item(
    db: Session,
    item_id: str,
    *,
    include_empty: bool = False,
) -> List[InventoryBatch]:
    get_item_or_404(db, item_id)
    stmt = select(InventoryBatch).where(InventoryBatch.item_id == item_id)
    if not include_empty:
        stmt = stmt.where(InventoryBatch.stock_quantity > 0)
    stmt = stmt.order_by(InventoryBatch.expiry_date.asc(),
                         InventoryBatch.received_at.asc())
    return list(db.execute(stmt).scalars().all())


def get_stock_movements(db: Session, batch_id: str) -> List[StockMovement]:
    get_batch_or_404(db, batch_id)
    return list(
        db.execute(
            select(StockMovement)
            .where(StockMovement.batch_id == batch_id)
            .order_by(StockMovement.created_at.desc())
        ).scalars().all())


def total_stock(db: Session, item_id: str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(InventoryBatch.stock_quantity), 0))
        .where(InventoryBatch.item_id == item_id)).scalar()
    return int(total or 0)


def available_stock(db: Session, item_id: str, *, today: Optional[date] = None) -> int:
    """Stock that can actually be dispensed (expired batches excluded)."""
    today = today or today_local()
    total = db.execute(
        select(func.coalesce(func.sum(InventoryBatch.stock_quantity), 0))
        .where(and_(
            InventoryBatch.item_id == item_id,
            InventoryBatch.expiry_date >= today,
        ))).scalar()
    return int(total or 0)
