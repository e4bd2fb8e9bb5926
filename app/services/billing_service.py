# FILE: app/services/billing_service.py
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import BillingAlreadyExists, NotFound
from app.db.session import atomic
from app.models.billing import Billing, BillingItem, Payment, PaymentStatus
from app.services.billing_engine import (
    BillingLine,
    compute_billing,
    get_encounter_or_404,
    make_line,
)
from app.services.billing_math import (
    D,
    ZERO,
    compute_tax,
    compute_totals,
    money2,
    resolve_discount,
)
from app.utils.timezone import today_local

logger = logging.getLogger(__name__)

# lines entered by hand at creation; compute_billing never produces them
MANUAL = "manual"


# ---------- Lookups ----------


def get_billing_or_404(db: Session, billing_id: str, *, lock: bool = False) -> Billing:
    stmt = select(Billing).where(Billing.id == billing_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    billing = db.execute(stmt).scalar_one_or_none()
    if not billing:
        raise NotFound(f"Billing {billing_id} not found")
    return billing


def get_billing_for_encounter(db: Session, encounter_id: str, *,
                              lock: bool = False) -> Optional[Billing]:
    stmt = select(Billing).where(Billing.encounter_id == encounter_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def get_billing_details(db: Session, encounter_id: str) -> Billing:
    billing = db.execute(
        select(Billing)
        .where(Billing.encounter_id == encounter_id)
        .options(selectinload(Billing.items), selectinload(Billing.payments))
    ).scalar_one_or_none()
    if not billing:
        raise NotFound(f"Billing for encounter {encounter_id} not found")
    return billing


# ---------- Totals ----------


def recompute_totals(
    billing: Billing,
    *,
    discount=None,
    discount_percentage=None,
    insurance_coverage=None,
    tax_percent=None,
) -> Billing:
    """
    Refresh every cached amount of `billing` from its items.

    Discount / insurance not passed in keep their current values; a stored
    percentage is re-applied to the new subtotal. paid_amount is never touched.
    """
    subtotal = money2(sum((D(i.total_price) for i in billing.items), ZERO))

    if discount is None and discount_percentage is None:
        if billing.discount_percentage is not None:
            discount_percentage = billing.discount_percentage
        else:
            discount = billing.discount or 0
    disc, pct = resolve_discount(subtotal,
                                 discount=discount,
                                 discount_percentage=discount_percentage)

    if insurance_coverage is None:
        insurance_coverage = billing.insurance_coverage or 0
    if tax_percent is None:
        tax_percent = settings.BILLING_DEFAULT_TAX
    tax = compute_tax(subtotal, disc, tax_percent)

    totals = compute_totals(subtotal, disc, tax, insurance_coverage,
                            billing.paid_amount or 0)

    billing.subtotal = subtotal
    billing.discount = disc
    billing.discount_percentage = pct
    billing.tax = tax
    billing.insurance_coverage = money2(insurance_coverage)
    billing.total_amount = totals["total_amount"]
    billing.patient_payable = totals["patient_payable"]
    billing.remaining_amount = totals["remaining_amount"]
    billing.payment_status = totals["payment_status"]
    return billing


# ---------- Items ----------


def _extra_lines(extra_items: Optional[Iterable[Mapping[str, Any]]]) -> List[BillingLine]:
    lines: List[BillingLine] = []
    for raw in extra_items or []:
        lines.append(
            make_line(item_type=raw["item_type"],
                      item_name=raw["item_name"],
                      item_code=raw.get("item_code"),
                      item_ref_id=raw.get("item_ref_id"),
                      quantity=raw.get("quantity", 1),
                      unit_price=raw["unit_price"],
                      discount=raw.get("discount") or 0,
                      description=raw.get("description"),
                      category=MANUAL))
    return lines


def _kept_manual_lines(billing: Billing) -> List[BillingLine]:
    return [
        BillingLine(item_type=i.item_type,
                    item_name=i.item_name,
                    quantity=int(i.quantity),
                    unit_price=money2(i.unit_price),
                    subtotal=money2(i.subtotal),
                    discount=money2(i.discount),
                    total_price=money2(i.total_price),
                    item_ref_id=i.item_ref_id,
                    item_code=i.item_code,
                    description=i.description,
                    category=MANUAL) for i in billing.items if i.category == MANUAL
    ]


def _replace_items(db: Session, billing: Billing, lines: List[BillingLine]) -> None:
    """Full-set replace: the old items go, the new set comes in, nothing is patched."""
    billing.items.clear()
    db.flush()
    for seq, line in enumerate(lines, start=1):
        billing.items.append(
            BillingItem(
                seq=seq,
                item_type=line.item_type,
                item_ref_id=line.item_ref_id,
                item_name=line.item_name,
                item_code=line.item_code,
                quantity=line.quantity,
                unit_price=line.unit_price,
                subtotal=line.subtotal,
                discount=line.discount,
                total_price=line.total_price,
                description=line.description,
                category=line.category,
            ))


# ---------- Create / update ----------


def create_billing(
    db: Session,
    encounter_id: str,
    *,
    created_by: Optional[str] = None,
    extra_items: Optional[Iterable[Mapping[str, Any]]] = None,
    discount=None,
    discount_percentage=None,
    insurance_coverage=None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Billing:
    """Create the encounter's billing; a second call is BillingAlreadyExists."""
    with atomic(db):
        get_encounter_or_404(db, encounter_id)
        if get_billing_for_encounter(db, encounter_id):
            raise BillingAlreadyExists(
                f"Billing already exists for encounter {encounter_id}")

        comp = compute_billing(db, encounter_id, now=now)
        billing = Billing(encounter_id=encounter_id,
                          created_by=created_by,
                          notes=notes,
                          paid_amount=ZERO,
                          insurance_coverage=ZERO,
                          discount=ZERO)
        db.add(billing)
        try:
            db.flush()
        except IntegrityError:
            # lost a race with another create for the same encounter
            raise BillingAlreadyExists(
                f"Billing already exists for encounter {encounter_id}")

        _replace_items(db, billing, comp.items + _extra_lines(extra_items))
        recompute_totals(billing,
                         discount=discount,
                         discount_percentage=discount_percentage,
                         insurance_coverage=insurance_coverage)

    logger.info("Billing created: encounter=%s items=%d payable=%s",
                encounter_id, len(billing.items), billing.patient_payable)
    db.refresh(billing)
    return billing


def create_or_update_billing(
    db: Session,
    encounter_id: str,
    *,
    created_by: Optional[str] = None,
    discount=None,
    discount_percentage=None,
    insurance_coverage=None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Billing:
    """
    Recompute the encounter's bill from scratch.

    Existing billing: all computed items deleted, fresh set inserted, totals
    recomputed. Manual lines and payments already taken stay on it.
    No billing yet: created.
    """
    with atomic(db):
        get_encounter_or_404(db, encounter_id)
        comp = compute_billing(db, encounter_id, now=now)

        billing = get_billing_for_encounter(db, encounter_id, lock=True)
        created = billing is None
        if created:
            billing = Billing(encounter_id=encounter_id,
                              created_by=created_by,
                              paid_amount=ZERO,
                              insurance_coverage=ZERO,
                              discount=ZERO)
            db.add(billing)
            try:
                db.flush()
            except IntegrityError:
                # another request created it between our read and insert
                raise BillingAlreadyExists(
                    f"Billing already exists for encounter {encounter_id}")
        manual = [] if created else _kept_manual_lines(billing)
        if notes is not None:
            billing.notes = notes

        _replace_items(db, billing, comp.items + manual)
        recompute_totals(billing,
                         discount=discount,
                         discount_percentage=discount_percentage,
                         insurance_coverage=insurance_coverage)

    logger.info("Billing %s: encounter=%s items=%d subtotal=%s",
                "created" if created else "recomputed", encounter_id,
                len(billing.items), billing.subtotal)
    db.refresh(billing)
    return billing


# ---------- Reads ----------


def list_pending_billings(db: Session, *, limit: int = 100) -> List[Billing]:
    return list(
        db.execute(
            select(Billing)
            .where(Billing.payment_status.in_([
                PaymentStatus.PENDING.value,
                PaymentStatus.PARTIAL.value,
            ]))
            .order_by(Billing.created_at.asc())
            .limit(limit)).scalars().all())


def billing_statistics(db: Session, *, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or today_local()

    counts = {s.value: 0 for s in PaymentStatus}
    for status, n in db.execute(
            select(Billing.payment_status, func.count(Billing.id))
            .group_by(Billing.payment_status)).all():
        counts[status] = int(n)

    total_revenue = db.execute(
        select(func.coalesce(func.sum(Billing.paid_amount), 0))).scalar()
    pending_revenue = db.execute(
        select(func.coalesce(func.sum(Billing.remaining_amount), 0))
        .where(Billing.payment_status != PaymentStatus.PAID.value)).scalar()

    start = datetime.combine(today, time.min)
    collected_today = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.received_at >= start,
               Payment.received_at < start + timedelta(days=1))).scalar()

    return {
        "total_billings": sum(counts.values()),
        "pending": counts[PaymentStatus.PENDING.value],
        "partial": counts[PaymentStatus.PARTIAL.value],
        "paid": counts[PaymentStatus.PAID.value],
        "total_revenue": money2(total_revenue or 0),
        "pending_revenue": money2(pending_revenue or 0),
        "collected_today": money2(collected_today or 0),
    }
