# FILE: app/services/billing_engine.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.billing import BillingItemType, Service
from app.models.ipd import BedAssignment, MaterialUsage, Room
from app.models.lis import LabOrder
from app.models.opd import Procedure, Visit, VisitType
from app.models.pharmacy_inventory import InventoryItem
from app.models.pharmacy_prescription import Prescription
from app.services.billing_math import ZERO, compute_line_amounts, money2

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# breakdown buckets, in bill order
CATEGORIES = ("service", "procedure", "laboratory", "medication", "room", "material")


@dataclass
class BillingLine:
    item_type: str
    item_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount: Decimal
    total_price: Decimal
    item_ref_id: Optional[str] = None
    item_code: Optional[str] = None
    description: Optional[str] = None
    category: str = "service"


@dataclass
class BillingComputation:
    encounter_id: str
    visit_type: str
    items: List[BillingLine] = field(default_factory=list)
    subtotal: Decimal = ZERO


def make_line(
    *,
    item_type: str,
    item_name: str,
    quantity,
    unit_price,
    discount=0,
    item_ref_id: Optional[str] = None,
    item_code: Optional[str] = None,
    description: Optional[str] = None,
    category: str = "service",
) -> BillingLine:
    amounts = compute_line_amounts(quantity, unit_price, discount)
    return BillingLine(
        item_type=item_type,
        item_name=item_name,
        quantity=int(quantity),
        unit_price=money2(unit_price),
        subtotal=amounts["subtotal"],
        discount=amounts["discount"],
        total_price=amounts["total_price"],
        item_ref_id=item_ref_id,
        item_code=item_code,
        description=description,
        category=category,
    )


def room_days(assigned_at: datetime, discharged_at: Optional[datetime],
              now: datetime) -> int:
    """Whole days charged for one bed assignment: rounded up, never below 1."""
    end = discharged_at or now
    seconds = (end - assigned_at).total_seconds()
    return max(1, math.ceil(seconds / SECONDS_PER_DAY))


# ---------- Collectors (read-only) ----------


def _first_active_service(db: Session, service_type: str) -> Optional[Service]:
    return db.execute(
        select(Service)
        .where(and_(Service.service_type == service_type,
                    Service.is_active.is_(True)))
        .order_by(Service.code.asc())
        .limit(1)).scalar_one_or_none()


def _fixed_fees(db: Session) -> List[BillingLine]:
    lines: List[BillingLine] = []
    for service_type, desc in (("administration", "Registration administration fee"),
                               ("consultation", "Doctor consultation fee")):
        svc = _first_active_service(db, service_type)
        if not svc:
            continue
        lines.append(
            make_line(item_type=BillingItemType.SERVICE.value,
                      item_ref_id=svc.id,
                      item_name=svc.name,
                      item_code=svc.code,
                      quantity=1,
                      unit_price=svc.price,
                      description=desc,
                      category="service"))
    return lines


def _procedure_fees(db: Session, visit: Visit) -> List[BillingLine]:
    stmt = select(Procedure).where(Procedure.encounter_id == visit.id)
    if visit.visit_type == VisitType.INPATIENT.value:
        stmt = stmt.where(Procedure.status == "completed")
    procs = db.execute(
        stmt.order_by(Procedure.performed_at.asc(), Procedure.id.asc())).scalars().all()

    lines: List[BillingLine] = []
    for proc in procs:
        svc = None
        if proc.code:
            svc = db.execute(
                select(Service).where(and_(
                    Service.service_type == "procedure",
                    Service.code == proc.code,
                    Service.is_active.is_(True),
                ))).scalar_one_or_none()
        if not svc:
            logger.debug("Procedure %s (code=%s) has no active catalog price; skipped",
                         proc.id, proc.code)
            continue
        lines.append(
            make_line(item_type=BillingItemType.SERVICE.value,
                      item_ref_id=svc.id,
                      item_name=svc.name,
                      item_code=svc.code,
                      quantity=1,
                      unit_price=svc.price,
                      description=proc.description,
                      category="procedure"))
    return lines


def _lab_fees(db: Session, visit: Visit) -> List[BillingLine]:
    orders = db.execute(
        select(LabOrder)
        .where(and_(LabOrder.encounter_id == visit.id,
                    LabOrder.status == "verified"))
        .order_by(LabOrder.ordered_at.asc(), LabOrder.id.asc())).scalars().all()
    return [
        make_line(item_type=BillingItemType.SERVICE.value,
                  item_ref_id=o.id,
                  item_name=o.test_name or "Lab test",
                  item_code=o.test_code,
                  quantity=1,
                  unit_price=o.price,
                  description=o.order_number,
                  category="laboratory") for o in orders
    ]


def _medication_fees(db: Session, visit: Visit) -> List[BillingLine]:
    stmt = (
        select(Prescription, InventoryItem)
        .join(InventoryItem, InventoryItem.id == Prescription.item_id)
        .where(Prescription.encounter_id == visit.id)
    )
    # ward stock only goes on the bill once it has actually been dispensed
    if visit.visit_type == VisitType.INPATIENT.value:
        stmt = stmt.where(Prescription.is_fulfilled.is_(True))
    rows = db.execute(
        stmt.order_by(Prescription.created_at.asc(), Prescription.id.asc())).all()

    lines: List[BillingLine] = []
    for rx, item in rows:
        desc = ", ".join(p for p in (rx.dosage, rx.frequency) if p) or None
        lines.append(
            make_line(item_type=BillingItemType.DRUG.value,
                      item_ref_id=rx.id,
                      item_name=item.name,
                      item_code=item.code,
                      quantity=rx.quantity,
                      unit_price=item.price,
                      description=desc,
                      category="medication"))
    return lines


def _room_fees(db: Session, visit: Visit, now: datetime) -> List[BillingLine]:
    rows = db.execute(
        select(BedAssignment, Room)
        .join(Room, Room.id == BedAssignment.room_id)
        .where(BedAssignment.encounter_id == visit.id)
        .order_by(BedAssignment.assigned_at.asc())).all()

    lines: List[BillingLine] = []
    for ba, room in rows:
        days = room_days(ba.assigned_at, ba.discharged_at, now)
        lines.append(
            make_line(item_type=BillingItemType.ROOM.value,
                      item_ref_id=room.id,
                      item_name=f"Room {room.room_number} - {room.room_type}",
                      item_code=room.room_number,
                      quantity=days,
                      unit_price=room.daily_rate,
                      description=f"Bed {ba.bed_number}, {days} day(s)",
                      category="room"))
    return lines


def _material_fees(db: Session, visit: Visit) -> List[BillingLine]:
    rows = db.execute(
        select(MaterialUsage, InventoryItem)
        .join(InventoryItem, InventoryItem.id == MaterialUsage.item_id)
        .where(MaterialUsage.encounter_id == visit.id)
        .order_by(MaterialUsage.used_at.asc(), MaterialUsage.id.asc())).all()
    return [
        make_line(item_type=BillingItemType.MATERIAL.value,
                  item_ref_id=mu.id,
                  item_name=mu.material_name or item.name,
                  item_code=item.code,
                  quantity=mu.quantity,
                  unit_price=mu.unit_price,
                  description=mu.notes,
                  category="material") for mu, item in rows
    ]


# ---------- Public ----------


def get_encounter_or_404(db: Session, encounter_id: str) -> Visit:
    visit = db.get(Visit, encounter_id)
    if not visit:
        raise NotFound(f"Encounter {encounter_id} not found")
    return visit


def compute_billing(
    db: Session,
    encounter_id: str,
    *,
    now: Optional[datetime] = None,
) -> BillingComputation:
    """
    Collect every billable line of an encounter. Reads only.

    Same inputs (and same `now` for open bed assignments) give the same
    lines in the same order.
    """
    visit = get_encounter_or_404(db, encounter_id)
    now = now or datetime.utcnow()

    items: List[BillingLine] = []
    items += _fixed_fees(db)
    items += _procedure_fees(db, visit)
    items += _lab_fees(db, visit)
    items += _medication_fees(db, visit)
    if visit.visit_type == VisitType.INPATIENT.value:
        items += _room_fees(db, visit, now)
        items += _material_fees(db, visit)

    subtotal = money2(sum((i.total_price for i in items), ZERO))
    return BillingComputation(encounter_id=visit.id,
                              visit_type=visit.visit_type,
                              items=items,
                              subtotal=subtotal)


def billing_breakdown(comp: BillingComputation) -> Dict[str, Any]:
    """Totals and line counts per category (discharge summary view)."""
    out: Dict[str, Any] = {}
    for cat in CATEGORIES:
        lines = [i for i in comp.items if i.category == cat]
        out[cat] = {
            "total": money2(sum((i.total_price for i in lines), ZERO)),
            "count": len(lines),
        }
    return out
