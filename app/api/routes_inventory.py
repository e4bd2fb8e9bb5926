# FILE: app/api/routes_inventory.py
from __future__ import annotations

from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.pharmacy import AllocationOut, AllocationPreviewOut
from app.schemas.pharmacy_inventory import (
    BatchOut,
    ExpiredWriteOffIn,
    ItemStockOut,
    StockAdjustIn,
    StockMovementOut,
    StockReceiveIn,
)
from app.services import inventory as inv_svc
from app.services.batch_allocator import allocated_total
from app.services.excel_export import build_movement_ledger_excel
from app.services.pharmacy import preview_allocation
from app.services.pharmacy_stock_alerts import item_stock_summary
from app.utils.resp import ok

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/batches")
def receive_stock(payload: StockReceiveIn, db: Session = Depends(get_db)):
    batch = inv_svc.receive_stock(db, **payload.model_dump())
    return ok(BatchOut.model_validate(batch), status_code=201)


@router.post("/batches/{batch_id}/adjust")
def adjust_stock(batch_id: str, payload: StockAdjustIn, db: Session = Depends(get_db)):
    batch = inv_svc.adjust_stock(db,
                                 batch_id=batch_id,
                                 delta=payload.delta,
                                 reason=payload.reason,
                                 performed_by=payload.performed_by)
    return ok(BatchOut.model_validate(batch))


@router.post("/expired/write-off")
def write_off_expired(payload: ExpiredWriteOffIn, db: Session = Depends(get_db)):
    written = inv_svc.write_off_expired(db,
                                        item_id=payload.item_id,
                                        performed_by=payload.performed_by)
    return ok([StockMovementOut.model_validate(m) for m in written])


@router.get("/items/{item_id}/stock")
def item_stock(
        item_id: str,
        include_empty: bool = Query(False),
        db: Session = Depends(get_db),
):
    return ok(ItemStockOut(**item_stock_summary(db, item_id, include_empty=include_empty)))


@router.get("/items/{item_id}/fefo-preview")
def fefo_preview(
        item_id: str,
        quantity: int = Query(..., gt=0),
        db: Session = Depends(get_db),
):
    allocs = preview_allocation(db, item_id, quantity)
    got = allocated_total(allocs)
    return ok(
        AllocationPreviewOut(
            item_id=item_id,
            required_quantity=quantity,
            allocated_quantity=got,
            is_complete=got >= quantity,
            allocations=[AllocationOut.from_allocation(a) for a in allocs],
        ))


@router.get("/batches/{batch_id}/movements")
def batch_movements(batch_id: str, db: Session = Depends(get_db)):
    rows = inv_svc.get_stock_movements(db, batch_id)
    return ok([StockMovementOut.model_validate(m) for m in rows])


@router.get("/batches/{batch_id}/movements/export")
def export_batch_movements(batch_id: str, db: Session = Depends(get_db)):
    batch = inv_svc.get_batch_or_404(db, batch_id)
    rows = inv_svc.get_stock_movements(db, batch_id)

    bio = BytesIO()
    build_movement_ledger_excel(bio, batch, rows)
    bio.seek(0)
    filename = f"movements_{batch.batch_number}.xlsx"
    return StreamingResponse(
        bio,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
