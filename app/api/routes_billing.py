# FILE: app/api/routes_billing.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.billing import (
    BillingCreateIn,
    BillingDetailOut,
    BillingLineOut,
    BillingOut,
    BillingPreviewOut,
    BillingRecomputeIn,
    BillingStatsOut,
)
from app.services import billing_service as svc
from app.services.billing_engine import billing_breakdown, compute_billing
from app.utils.resp import ok

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("/encounters/{encounter_id}/preview")
def preview_billing(encounter_id: str, db: Session = Depends(get_db)):
    comp = compute_billing(db, encounter_id)
    return ok(
        BillingPreviewOut(
            encounter_id=comp.encounter_id,
            visit_type=comp.visit_type,
            items=[BillingLineOut.model_validate(i) for i in comp.items],
            subtotal=comp.subtotal,
            breakdown=billing_breakdown(comp),
        ))


@router.post("/encounters/{encounter_id}")
def create_billing(encounter_id: str, payload: BillingCreateIn, db: Session = Depends(get_db)):
    billing = svc.create_billing(
        db,
        encounter_id,
        created_by=payload.created_by,
        extra_items=[i.model_dump() for i in payload.items],
        discount=payload.discount,
        discount_percentage=payload.discount_percentage,
        insurance_coverage=payload.insurance_coverage,
        notes=payload.notes,
    )
    return ok(BillingDetailOut.model_validate(billing), status_code=201)


@router.put("/encounters/{encounter_id}")
def recompute_billing(encounter_id: str, payload: BillingRecomputeIn, db: Session = Depends(get_db)):
    billing = svc.create_or_update_billing(
        db,
        encounter_id,
        created_by=payload.created_by,
        discount=payload.discount,
        discount_percentage=payload.discount_percentage,
        insurance_coverage=payload.insurance_coverage,
        notes=payload.notes,
    )
    return ok(BillingDetailOut.model_validate(billing))


@router.get("/encounters/{encounter_id}")
def billing_details(encounter_id: str, db: Session = Depends(get_db)):
    return ok(BillingDetailOut.model_validate(svc.get_billing_details(db, encounter_id)))


@router.get("/pending")
def pending_billings(limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    return ok([BillingOut.model_validate(b) for b in svc.list_pending_billings(db, limit=limit)])


@router.get("/statistics")
def billing_statistics(db: Session = Depends(get_db)):
    return ok(BillingStatsOut(**svc.billing_statistics(db)))
