# FILE: app/services/batch_allocator.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from app.core.errors import InvalidQuantity
from app.models.pharmacy_inventory import InventoryBatch
from app.utils.timezone import today_local


@dataclass(frozen=True)
class Allocation:
    batch: Any
    quantity: int


def _fefo_key(batch):
    # equal expiry -> earliest received first; sort is stable for full ties
    received = getattr(batch, "received_at", None) or datetime.min
    return (batch.expiry_date, received)


def allocatable_batches(batches: Iterable, *, today: Optional[date] = None) -> list:
    """Non-expired batches with stock, in FEFO order."""
    today = today or today_local()
    usable = [
        b for b in batches
        if (b.stock_quantity or 0) > 0 and b.expiry_date >= today
    ]
    return sorted(usable, key=_fefo_key)


def allocate(
    available_batches: Iterable,
    required_quantity: int,
    *,
    today: Optional[date] = None,
) -> List[Allocation]:
    """
    FEFO (First-Expired-First-Out) allocation.

    - drops batches that are expired or empty
    - when the earliest-expiring batch covers the whole quantity, it is the
      only batch used (no fragmentation)
    - otherwise takes min(stock, remaining) from each batch in FEFO order

    A later batch that could cover everything alone is never preferred over
    earlier-expiring stock.

    May return less than required when stock runs out; the caller decides
    whether a partial allocation is acceptable.
    """
    if required_quantity is None or int(required_quantity) <= 0:
        raise InvalidQuantity(
            f"Required quantity must be > 0 (got {required_quantity})")
    required = int(required_quantity)

    ordered = allocatable_batches(available_batches, today=today)

    if ordered and ordered[0].stock_quantity >= required:
        return [Allocation(batch=ordered[0], quantity=required)]

    allocations: List[Allocation] = []
    remaining = required
    for batch in ordered:
        if remaining <= 0:
            break
        take = min(batch.stock_quantity, remaining)
        allocations.append(Allocation(batch=batch, quantity=take))
        remaining -= take

    return allocations


def allocated_total(allocations: Iterable[Allocation]) -> int:
    return sum(a.quantity for a in allocations)


def load_batches_for_item(
    db: Session,
    item_id: str,
    *,
    today: Optional[date] = None,
    lock: bool = False,
) -> List[InventoryBatch]:
    """
    Candidate batches for one item, already filtered and FEFO ordered in SQL.
    With lock=True the rows stay locked (FOR UPDATE) until the transaction ends.
    """
    today = today or today_local()
    stmt = (
        select(InventoryBatch)
        .where(and_(
            InventoryBatch.item_id == item_id,
            InventoryBatch.stock_quantity > 0,
            InventoryBatch.expiry_date >= today,
        ))
        .order_by(
            InventoryBatch.expiry_date.asc(),
            InventoryBatch.received_at.asc(),
            InventoryBatch.created_at.asc(),
        )
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return list(db.execute(stmt).scalars().all())
