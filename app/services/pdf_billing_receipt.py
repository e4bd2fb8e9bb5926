# FILE: app/services/pdf_billing_receipt.py
from __future__ import annotations
from io import BytesIO
from datetime import datetime, date
from typing import Iterable, Sequence, Any

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from reportlab.lib.units import mm
from reportlab.lib import colors

from app.core.config import settings
from app.services.billing_math import format_money


def _fmt_dt(dt: Any) -> str:
    if not dt:
        return ""
    if isinstance(dt, datetime):
        return dt.strftime("%d-%m-%Y %H:%M")
    if isinstance(dt, date):
        return dt.strftime("%d-%m-%Y")
    return str(dt)


def _m(x) -> str:
    return format_money(x or 0, settings.CURRENCY_PREFIX)


def _new_canvas() -> tuple[canvas.Canvas, BytesIO]:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    return c, buf


def _draw_header(c: canvas.Canvas,
                 main_title: str,
                 sub_title: str = "") -> float:
    w, h = A4
    x = 18 * mm
    y = h - 20 * mm

    c.setFont("Helvetica-Bold", 14)
    c.drawString(x, y, settings.PROJECT_NAME)

    y -= 7 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, main_title)

    if sub_title:
        y -= 5 * mm
        c.setFont("Helvetica", 10)
        c.drawString(x, y, sub_title)

    y -= 4 * mm
    c.setStrokeColor(colors.grey)
    c.setLineWidth(0.6)
    c.line(x, y, w - x, y)
    y -= 6 * mm
    return y


def _table(
    c: canvas.Canvas,
    y: float,
    headers: Sequence[str],
    rows: Iterable[Sequence[str]],
    col_widths_mm: Sequence[float],
) -> float:
    x0 = 18 * mm
    col_points = [w * mm for w in col_widths_mm]
    total_width = sum(col_points)

    def _head(y: float) -> float:
        c.setFont("Helvetica-Bold", 9)
        for i, htxt in enumerate(headers):
            c.drawString(x0 + sum(col_points[:i]), y, htxt)
        y -= 4 * mm
        c.setLineWidth(0.4)
        c.line(x0, y, x0 + total_width, y)
        c.setFont("Helvetica", 9)
        return y - 5 * mm

    y = _head(y)
    for row in rows:
        if y < 25 * mm:
            c.showPage()
            y = _head(_draw_header(c, "Payment Receipt (continued)") - 4 * mm)
        for i, cell in enumerate(row):
            c.drawString(x0 + sum(col_points[:i]), y, (cell or "")[:48])
        y -= 4 * mm
    return y


def build_receipt_pdf(billing, payment) -> BytesIO:
    """
    billing: Billing ORM (items loaded), state after the payment
    payment: Payment ORM the receipt is for
    """
    c, buf = _new_canvas()
    y = _draw_header(c, "Payment Receipt", payment.receipt_number or "")

    visit = getattr(billing, "encounter", None)
    x = 18 * mm
    c.setFont("Helvetica", 9)
    for label, value in (
        ("Patient", getattr(visit, "patient_name", "") or ""),
        ("MR No", getattr(visit, "patient_mr_number", "") or ""),
        ("Visit", getattr(visit, "visit_number", "") or billing.encounter_id),
        ("Paid at", _fmt_dt(payment.received_at)),
        ("Cashier", payment.received_by or ""),
    ):
        c.drawString(x, y, f"{label:<9}: {value}")
        y -= 4 * mm
    y -= 4 * mm

    rows = [[
        str(i.seq),
        i.item_name,
        i.item_type,
        str(i.quantity),
        _m(i.unit_price),
        _m(i.total_price),
    ] for i in billing.items]
    y = _table(c, y, ["#", "Item", "Type", "Qty", "Unit price", "Total"], rows,
               [8, 66, 18, 12, 34, 36])

    y -= 4 * mm
    summary = [
        ("Subtotal", billing.subtotal),
        ("Discount", billing.discount),
        ("Tax", billing.tax),
        ("Total", billing.total_amount),
        ("Insurance", billing.insurance_coverage),
        ("Patient payable", billing.patient_payable),
        ("This payment", payment.amount),
    ]
    if payment.amount_received is not None:
        summary += [("Received", payment.amount_received),
                    ("Change", payment.change_given)]
    summary += [("Total paid", billing.paid_amount),
                ("Remaining", billing.remaining_amount)]

    for label, value in summary:
        if y < 25 * mm:
            c.showPage()
            y = _draw_header(c, "Payment Receipt (continued)")
        c.setFont("Helvetica-Bold" if label in ("Patient payable", "Remaining") else "Helvetica", 9)
        c.drawString(120 * mm, y, label)
        c.drawRightString(192 * mm, y, _m(value))
        y -= 4.5 * mm

    y -= 4 * mm
    c.setFont("Helvetica", 9)
    c.drawString(x, y, f"Method: {payment.payment_method}"
                 + (f"  Ref: {payment.payment_reference}" if payment.payment_reference else ""))
    y -= 4 * mm
    c.drawString(x, y, f"Status: {billing.payment_status.upper()}")

    c.showPage()
    c.save()
    buf.seek(0)
    return buf
