# app/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional

from app.models.billing import PaymentStatus

Q2 = Decimal("0.01")
ZERO = Decimal("0")


def D(x) -> Decimal:
    if isinstance(x, float):
        # str() first so 0.1 stays 0.1
        return Decimal(str(x))
    try:
        return Decimal(str(x if x is not None else 0))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a decimal amount: {x!r}")


def money2(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


def compute_line_amounts(qty, unit_price, discount_amount=0) -> Dict[str, Decimal]:
    """
    subtotal    = qty * unit_price
    total_price = subtotal - discount
    """
    subtotal = money2(D(qty) * D(unit_price))
    discount = money2(discount_amount)
    return {
        "subtotal": subtotal,
        "discount": discount,
        "total_price": money2(subtotal - discount),
    }


def discount_from_percentage(subtotal, percentage) -> Decimal:
    return money2(D(subtotal) * D(percentage) / Decimal("100"))


def resolve_discount(
    subtotal,
    *,
    discount=None,
    discount_percentage=None,
) -> tuple[Decimal, Optional[Decimal]]:
    """
    Effective (discount_amount, discount_percentage).
    Percentage wins when both are given; a flat discount clears the percentage.
    """
    if discount_percentage is not None:
        pct = D(discount_percentage)
        return discount_from_percentage(subtotal, pct), pct
    return money2(discount or 0), None


def compute_tax(subtotal, discount, tax_percent) -> Decimal:
    taxable = max(ZERO, D(subtotal) - D(discount))
    return money2(taxable * D(tax_percent) / Decimal("100"))


def compute_totals(subtotal, discount, tax, insurance_coverage, paid_amount) -> Dict[str, Decimal]:
    total_amount = money2(D(subtotal) - D(discount) + D(tax))
    patient_payable = money2(total_amount - D(insurance_coverage))
    paid = money2(paid_amount)
    return {
        "total_amount": total_amount,
        "patient_payable": patient_payable,
        "remaining_amount": money2(patient_payable - paid),
        "payment_status": payment_status_for(paid, patient_payable),
    }


def payment_status_for(paid_amount, patient_payable) -> str:
    paid = D(paid_amount)
    if paid == ZERO:
        return PaymentStatus.PENDING.value
    if paid >= D(patient_payable):
        return PaymentStatus.PAID.value
    return PaymentStatus.PARTIAL.value


def compute_change(amount_received, amount) -> Decimal:
    """Caller must have rejected amount_received < amount already."""
    change = money2(D(amount_received) - D(amount))
    if change < ZERO:
        raise ValueError("amount_received is below the payment amount")
    return change


def format_money(x, prefix: str = "") -> str:
    s = f"{money2(x):,.2f}"
    return f"{prefix} {s}".strip()
