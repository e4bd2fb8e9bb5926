# app/api/routes_pharmacy_dispense.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.pharmacy_prescription import DemandType
from app.schemas.pharmacy import (
    AllocationOut,
    AutoDispenseIn,
    AutoDispenseOut,
    BulkFulfillmentIn,
    DemandRecordOut,
    FulfillmentIn,
)
from app.schemas.pharmacy_inventory import StockMovementOut
from app.services import pharmacy as pharmacy_svc
from app.utils.resp import ok

router = APIRouter(prefix="/pharmacy/dispense", tags=["Pharmacy Dispense"])


@router.post("/fulfill")
def fulfill_one(payload: FulfillmentIn, db: Session = Depends(get_db)):
    rec = pharmacy_svc.fulfill(db,
                               payload.demand_id,
                               payload.batch_id,
                               payload.quantity,
                               payload.performed_by,
                               demand_type=payload.demand_type,
                               notes=payload.notes)
    return ok(DemandRecordOut.model_validate(rec))


@router.post("/fulfill/bulk")
def fulfill_bulk(payload: BulkFulfillmentIn, db: Session = Depends(get_db)):
    records = pharmacy_svc.fulfill_bulk(db, payload.requests)
    return ok([DemandRecordOut.model_validate(r) for r in records])


@router.post("/{demand_id}/auto")
def auto_dispense(demand_id: str, payload: AutoDispenseIn, db: Session = Depends(get_db)):
    rec, allocs = pharmacy_svc.dispense_fefo(db,
                                             demand_id,
                                             payload.performed_by,
                                             demand_type=payload.demand_type,
                                             allow_partial=payload.allow_partial,
                                             notes=payload.notes)
    return ok(
        AutoDispenseOut(
            record=DemandRecordOut.model_validate(rec),
            allocations=[AllocationOut.from_allocation(a) for a in allocs],
        ))


@router.get("/{demand_id}/movements")
def demand_movements(
        demand_id: str,
        demand_type: DemandType = Query(DemandType.PRESCRIPTION),
        db: Session = Depends(get_db),
):
    rows = pharmacy_svc.dispense_movements(db, demand_id, demand_type=demand_type)
    return ok([StockMovementOut.model_validate(m) for m in rows])
