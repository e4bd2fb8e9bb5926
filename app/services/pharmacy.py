# FILE: app/services/pharmacy.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import select, update, and_
from sqlalchemy.orm import Session

from app.core.errors import (
    AlreadyFulfilled,
    BatchMismatch,
    EngineError,
    InsufficientStock,
    InvalidChoice,
    InvalidQuantity,
    NoAllocatableStock,
    NotFound,
)
from app.db.session import atomic
from app.models.ipd import MaterialUsage
from app.models.pharmacy_inventory import InventoryBatch, MovementType, StockMovement
from app.models.pharmacy_prescription import DemandType, Prescription
from app.schemas.pharmacy import FulfillmentIn
from app.services.batch_allocator import (
    Allocation,
    allocate,
    allocated_total,
    load_batches_for_item,
)
from app.services.inventory import (
    create_stock_movement,
    deduct_batch_stock,
    get_batch_or_404,
    get_item_or_404,
)

logger = logging.getLogger(__name__)

DemandRecord = Union[Prescription, MaterialUsage]

_DEMAND_MODELS: Dict[DemandType, Type] = {
    DemandType.PRESCRIPTION: Prescription,
    DemandType.MATERIAL_USAGE: MaterialUsage,
}

_LABELS = {
    DemandType.PRESCRIPTION: "Prescription",
    DemandType.MATERIAL_USAGE: "Material usage",
}


def _demand_type(value: DemandType | str) -> DemandType:
    try:
        return DemandType(value)
    except ValueError:
        raise InvalidChoice(
            f"Unknown demand type {value!r}; expected one of "
            f"{', '.join(d.value for d in DemandType)}")


def _model_for(demand_type: DemandType | str) -> Tuple[DemandType, Type]:
    dt = _demand_type(demand_type)
    return dt, _DEMAND_MODELS[dt]


# ---------- Demand record helpers ----------


def _load_demand_readonly(db: Session, demand_type: DemandType, demand_id: str) -> DemandRecord:
    rec = db.get(_DEMAND_MODELS[demand_type], demand_id)
    if not rec:
        raise NotFound(f"{_LABELS[demand_type]} {demand_id} not found")
    return rec


def _load_demand(db: Session, demand_type: DemandType | str, demand_id: str) -> DemandRecord:
    """Locked, freshly read demand record (never a stale identity-map copy)."""
    dt, model = _model_for(demand_type)
    rec = db.execute(
        select(model)
        .where(model.id == demand_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not rec:
        raise NotFound(f"{_LABELS[dt]} {demand_id} not found")
    return rec


def _ensure_not_fulfilled(rec: DemandRecord) -> None:
    if rec.is_fulfilled:
        raise AlreadyFulfilled(
            f"{_LABELS[rec.demand_type]} {rec.id} already fulfilled "
            f"(by {rec.fulfilled_by} at {rec.fulfilled_at})")


def _ensure_dispensable(rec: DemandRecord, batch: InventoryBatch, qty: int) -> None:
    if batch.item_id != rec.item_id:
        raise BatchMismatch(
            f"Batch {batch.batch_number} does not hold item {rec.item_id} "
            f"required by {_LABELS[rec.demand_type].lower()} {rec.id}")
    if qty <= 0:
        raise InvalidQuantity(f"Dispense quantity must be > 0 (got {qty})")
    if qty > int(rec.quantity):
        raise InvalidQuantity(
            f"Dispense quantity {qty} exceeds required {rec.quantity} "
            f"for {_LABELS[rec.demand_type].lower()} {rec.id}")


def _mark_fulfilled(
    db: Session,
    rec: DemandRecord,
    *,
    batch_id: str,
    dispensed_qty: int,
    performed_by: str,
    notes: Optional[str],
) -> None:
    """
    Flip is_fulfilled with a conditional update (… WHERE is_fulfilled = false)
    so two racing dispensers can never both win.
    """
    model = type(rec)
    res = db.execute(
        update(model)
        .where(and_(model.id == rec.id, model.is_fulfilled.is_(False)))
        .values(
            is_fulfilled=True,
            dispensed_quantity=int(dispensed_qty),
            batch_id=batch_id,
            fulfilled_by=performed_by,
            fulfilled_at=datetime.utcnow(),
            fulfillment_notes=notes,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise AlreadyFulfilled(
            f"{_LABELS[rec.demand_type]} {rec.id} already fulfilled")
    db.refresh(rec)


def _dispense_from_batch(
    db: Session,
    rec: DemandRecord,
    batch: InventoryBatch,
    qty: int,
    performed_by: str,
) -> None:
    balance = deduct_batch_stock(db, batch, qty)
    create_stock_movement(
        db,
        batch=batch,
        movement_type=MovementType.OUT,
        qty_delta=-qty,
        balance_after=balance,
        reason=f"{_LABELS[rec.demand_type]} #{rec.id}",
        reference_type=rec.demand_type.value,
        reference_id=rec.id,
        performed_by=performed_by,
    )


# ---------- Single ----------


def fulfill(
    db: Session,
    demand_id: str,
    batch_id: str,
    quantity: int,
    performed_by: str,
    *,
    demand_type: DemandType | str = DemandType.PRESCRIPTION,
    notes: Optional[str] = None,
) -> DemandRecord:
    """
    Dispense one demand record from one batch, all-or-nothing:
    stock decrement + "out" movement + fulfilled flag in one transaction.
    Preconditions are checked against locked rows inside that transaction.
    """
    qty = int(quantity)
    try:
        with atomic(db):
            rec = _load_demand(db, demand_type, demand_id)
            _ensure_not_fulfilled(rec)
            batch = get_batch_or_404(db, batch_id, lock=True)
            _ensure_dispensable(rec, batch, qty)

            if batch.stock_quantity < qty:
                raise InsufficientStock(
                    f"Insufficient stock for batch {batch.batch_number}. "
                    f"Available: {batch.stock_quantity}, Requested: {qty}",
                    available=batch.stock_quantity,
                    requested=qty,
                    batch_id=batch.id,
                )

            _dispense_from_batch(db, rec, batch, qty, performed_by)
            _mark_fulfilled(db,
                            rec,
                            batch_id=batch.id,
                            dispensed_qty=qty,
                            performed_by=performed_by,
                            notes=notes)
    except EngineError as e:
        logger.warning("Fulfillment rejected: %s %s: %s", demand_type,
                       demand_id, e)
        raise

    logger.info("Fulfilled %s %s from batch %s qty=%s by %s",
                rec.demand_type.value, rec.id, batch_id, qty, performed_by)
    db.refresh(rec)
    return rec


# ---------- Bulk ----------


@dataclass
class _PlannedDispense:
    request: FulfillmentIn
    record: DemandRecord
    batch: InventoryBatch


def _validate_bulk(db: Session, requests: Sequence[FulfillmentIn]) -> List[_PlannedDispense]:
    """
    Check every request against one snapshot before anything is written.
    Quantities hitting the same batch are summed against its stock.
    """
    seen: set = set()
    batches: Dict[str, InventoryBatch] = {}
    needed: Dict[str, int] = {}
    plan: List[_PlannedDispense] = []

    for req in requests:
        key = (_demand_type(req.demand_type), req.demand_id)
        if key in seen:
            raise AlreadyFulfilled(
                f"{_LABELS[key[0]]} {req.demand_id} appears more than once in the request")
        seen.add(key)

        rec = _load_demand(db, req.demand_type, req.demand_id)
        _ensure_not_fulfilled(rec)

        batch = batches.get(req.batch_id)
        if batch is None:
            batch = get_batch_or_404(db, req.batch_id, lock=True)
            batches[batch.id] = batch

        _ensure_dispensable(rec, batch, int(req.quantity))
        needed[batch.id] = needed.get(batch.id, 0) + int(req.quantity)
        plan.append(_PlannedDispense(request=req, record=rec, batch=batch))

    for bid, total in needed.items():
        batch = batches[bid]
        if batch.stock_quantity < total:
            raise InsufficientStock(
                f"Insufficient stock for batch {batch.batch_number}. "
                f"Available: {batch.stock_quantity}, Requested: {total}",
                available=batch.stock_quantity,
                requested=total,
                batch_id=batch.id,
            )
    return plan


def fulfill_bulk(db: Session, requests: Sequence[FulfillmentIn]) -> List[DemandRecord]:
    """
    Validate all, then apply all in a single transaction.
    One bad request means no record is fulfilled and no stock moves.
    """
    if not requests:
        raise InvalidQuantity("At least one fulfillment request is required")

    try:
        with atomic(db):
            plan = _validate_bulk(db, requests)
            for p in plan:
                qty = int(p.request.quantity)
                _dispense_from_batch(db, p.record, p.batch, qty,
                                     p.request.performed_by)
                _mark_fulfilled(db,
                                p.record,
                                batch_id=p.batch.id,
                                dispensed_qty=qty,
                                performed_by=p.request.performed_by,
                                notes=p.request.notes)
    except EngineError as e:
        logger.warning("Bulk fulfillment rejected (%d request(s)): %s",
                       len(requests), e)
        raise

    logger.info("Bulk fulfilled %d demand record(s)", len(plan))
    records = [p.record for p in plan]
    for rec in records:
        db.refresh(rec)
    return records


# ---------- FEFO auto-dispense ----------


def dispense_fefo(
    db: Session,
    demand_id: str,
    performed_by: str,
    *,
    demand_type: DemandType | str = DemandType.PRESCRIPTION,
    allow_partial: bool = False,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[DemandRecord, List[Allocation]]:
    """
    Pick batches by FEFO and dispense the whole required quantity.

    A short allocation is NoAllocatableStock unless allow_partial is set,
    in which case whatever could be allocated is dispensed and recorded.
    """
    try:
        with atomic(db):
            rec = _load_demand(db, demand_type, demand_id)
            _ensure_not_fulfilled(rec)

            required = int(rec.quantity)
            batches = load_batches_for_item(db, rec.item_id, today=today, lock=True)
            allocations = allocate(batches, required, today=today)
            got = allocated_total(allocations)

            if got == 0 or (got < required and not allow_partial):
                raise NoAllocatableStock(
                    f"Not enough stock for {_LABELS[rec.demand_type].lower()} {rec.id}. "
                    f"Required: {required}, Allocatable: {got}",
                    allocated=got,
                    requested=required,
                )

            for a in allocations:
                _dispense_from_batch(db, rec, a.batch, a.quantity, performed_by)
            _mark_fulfilled(db,
                            rec,
                            batch_id=allocations[0].batch.id,
                            dispensed_qty=got,
                            performed_by=performed_by,
                            notes=notes)
    except EngineError as e:
        logger.warning("FEFO dispense rejected: %s %s: %s", demand_type,
                       demand_id, e)
        raise

    logger.info("FEFO dispensed %s %s qty=%s over %d batch(es)",
                rec.demand_type.value, rec.id, got, len(allocations))
    db.refresh(rec)
    return rec, allocations


def preview_allocation(
    db: Session,
    item_id: str,
    quantity: int,
    *,
    today: Optional[date] = None,
) -> List[Allocation]:
    """Read-only FEFO plan for the dispense screen."""
    get_item_or_404(db, item_id)
    return allocate(load_batches_for_item(db, item_id, today=today), quantity, today=today)


def dispense_movements(
    db: Session,
    demand_id: str,
    *,
    demand_type: DemandType | str = DemandType.PRESCRIPTION,
) -> List[StockMovement]:
    """Every "out" movement written for one demand record, one per batch drawn from."""
    dt, _ = _model_for(demand_type)
    _load_demand_readonly(db, dt, demand_id)
    return list(
        db.execute(
            select(StockMovement)
            .join(InventoryBatch, InventoryBatch.id == StockMovement.batch_id)
            .where(and_(
                StockMovement.movement_type == MovementType.OUT.value,
                StockMovement.reference_type == dt.value,
                StockMovement.reference_id == demand_id,
            ))
            .order_by(StockMovement.created_at.asc(),
                      InventoryBatch.expiry_date.asc(),
                      InventoryBatch.received_at.asc())
        ).scalars().all())
