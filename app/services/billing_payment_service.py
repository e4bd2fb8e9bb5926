# FILE: app/services/billing_payment_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    EngineError,
    InsufficientAmountReceived,
    InvalidChoice,
    InvalidPaymentAmount,
    NotFound,
)
from app.db.session import atomic
from app.models.billing import Billing, PayMethod, Payment
from app.services.billing_math import (
    ZERO,
    compute_change,
    format_money,
    money2,
    payment_status_for,
)
from app.services.billing_service import get_billing_or_404, recompute_totals
from app.services.id_gen import make_receipt_number
from app.utils.timezone import now_local

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    billing: Billing
    payment: Payment
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: str
    change: Optional[Decimal] = None


def _money(x) -> str:
    return format_money(x, settings.CURRENCY_PREFIX)


def _pay_method(value: PayMethod | str) -> PayMethod:
    try:
        return PayMethod(value)
    except ValueError:
        raise InvalidChoice(
            f"Unknown payment method {value!r}; expected one of "
            f"{', '.join(m.value for m in PayMethod)}")


def apply_discount_and_pay(
    db: Session,
    billing_id: str,
    amount,
    method: PayMethod | str,
    *,
    received_by: str,
    discount=None,
    discount_percentage=None,
    insurance_coverage=None,
    amount_received=None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentResult:
    """
    Optional discount / insurance change plus one payment, one transaction.

    The adjusted totals are what the amount is checked against; if the
    payment is rejected the adjustment is rolled back with it.
    """
    method = _pay_method(method)
    now = now or now_local()
    amt = money2(amount)

    try:
        with atomic(db):
            billing = get_billing_or_404(db, billing_id, lock=True)

            if (discount is not None or discount_percentage is not None
                    or insurance_coverage is not None):
                recompute_totals(billing,
                                 discount=discount,
                                 discount_percentage=discount_percentage,
                                 insurance_coverage=insurance_coverage)
                db.flush()

            remaining = money2(billing.remaining_amount)
            if amt <= ZERO or amt > remaining:
                raise InvalidPaymentAmount(
                    f"Invalid payment amount {_money(amt)}: must be greater "
                    f"than 0 and not exceed the remaining balance {_money(remaining)}",
                    amount=amt,
                    remaining=remaining,
                )

            change = None
            received = None
            if method == PayMethod.CASH:
                if amount_received is None or money2(amount_received) < amt:
                    got = ZERO if amount_received is None else money2(amount_received)
                    raise InsufficientAmountReceived(
                        f"Amount received {_money(got)} is less than the "
                        f"payment amount {_money(amt)}",
                        amount=amt,
                        received=got,
                    )
                received = money2(amount_received)
                change = compute_change(received, amt)

            payment = Payment(
                billing_id=billing.id,
                receipt_number=make_receipt_number(db, on_date=now.date()),
                amount=amt,
                payment_method=method.value,
                payment_reference=reference,
                amount_received=received,
                change_given=change,
                received_by=received_by,
                received_at=now,
                notes=notes,
            )
            db.add(payment)

            paid = money2(money2(billing.paid_amount) + amt)
            billing.paid_amount = paid
            billing.remaining_amount = money2(money2(billing.patient_payable) - paid)
            billing.payment_status = payment_status_for(paid, billing.patient_payable)
            billing.payment_method = method.value
            billing.payment_reference = reference
            billing.processed_by = received_by
            billing.processed_at = now
            db.flush()
    except EngineError as e:
        logger.warning("Payment rejected for billing %s: %s", billing_id, e)
        raise

    logger.info("Payment %s on billing %s: %s via %s -> %s (remaining %s)",
                payment.receipt_number, billing.id, amt, method.value,
                billing.payment_status, billing.remaining_amount)
    db.refresh(billing)
    return PaymentResult(
        billing=billing,
        payment=payment,
        paid_amount=money2(billing.paid_amount),
        remaining_amount=money2(billing.remaining_amount),
        payment_status=billing.payment_status,
        change=change,
    )


def list_payments(db: Session, billing_id: str) -> List[Payment]:
    get_billing_or_404(db, billing_id)
    return list(
        db.execute(
            select(Payment)
            .where(Payment.billing_id == billing_id)
            .order_by(Payment.received_at.asc())).scalars().all())


def get_payment_or_404(db: Session, payment_id: str) -> Payment:
    pay = db.get(Payment, payment_id)
    if not pay:
        raise NotFound(f"Payment {payment_id} not found")
    return pay
