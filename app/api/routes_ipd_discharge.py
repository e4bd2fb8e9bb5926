# FILE: app/api/routes_ipd_discharge.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.billing import DischargeCheckOut
from app.services.discharge import can_discharge
from app.utils.resp import ok

router = APIRouter(prefix="/ipd/discharge", tags=["IPD Discharge"])


@router.get("/{encounter_id}/can-discharge")
def discharge_check(encounter_id: str, db: Session = Depends(get_db)):
    chk = can_discharge(db, encounter_id)
    b = chk.billing
    return ok(
        DischargeCheckOut(
            encounter_id=encounter_id,
            allowed=chk.allowed,
            reason=chk.reason,
            payment_status=b.payment_status if b else None,
            remaining_amount=b.remaining_amount if b else None,
        ))
