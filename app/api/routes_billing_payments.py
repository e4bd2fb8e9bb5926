from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.billing import BillingOut, PaymentOut
from app.schemas.billing_payments import PaymentResultOut, ProcessPaymentIn
from app.services.billing_payment_service import (
    apply_discount_and_pay,
    get_payment_or_404,
    list_payments,
)
from app.services.pdf_billing_receipt import build_receipt_pdf
from app.utils.resp import ok

router = APIRouter(prefix="/billing", tags=["Billing Payments"])


@router.post("/{billing_id}/payments")
def process_payment(billing_id: str, payload: ProcessPaymentIn, db: Session = Depends(get_db)):
    res = apply_discount_and_pay(
        db,
        billing_id,
        payload.amount,
        payload.payment_method,
        received_by=payload.received_by,
        discount=payload.discount,
        discount_percentage=payload.discount_percentage,
        insurance_coverage=payload.insurance_coverage,
        amount_received=payload.amount_received,
        reference=payload.payment_reference,
        notes=payload.notes,
    )
    return ok(
        PaymentResultOut(
            billing=BillingOut.model_validate(res.billing),
            payment=PaymentOut.model_validate(res.payment),
            paid_amount=res.paid_amount,
            remaining_amount=res.remaining_amount,
            payment_status=res.payment_status,
            change=res.change,
        ),
        status_code=201,
    )


@router.get("/{billing_id}/payments")
def payment_history(billing_id: str, db: Session = Depends(get_db)):
    return ok([PaymentOut.model_validate(p) for p in list_payments(db, billing_id)])


@router.get("/payments/{payment_id}/receipt.pdf")
def payment_receipt_pdf(payment_id: str, db: Session = Depends(get_db)):
    pay = get_payment_or_404(db, payment_id)
    buf = build_receipt_pdf(pay.billing, pay)
    filename = (pay.receipt_number or pay.id).replace("/", "-")
    return StreamingResponse(
        buf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}.pdf"'},
    )
