from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter


def _money(x) -> float:
    return float(Decimal(str(x or "0")))


def build_movement_ledger_excel(fp, batch, movements: Iterable):
    """
    One sheet per batch: every stock movement, oldest first, with the
    running balance recorded at the time.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = f"Batch {batch.batch_number}"[:31]

    item = getattr(batch, "item", None)
    ws.append(["Item", getattr(item, "name", "") or batch.item_id])
    ws.append(["Batch", batch.batch_number])
    ws.append(["Expiry", batch.expiry_date])
    ws.append(["Current stock", int(batch.stock_quantity or 0)])
    ws.append(["Purchase price", _money(batch.purchase_price)])
    ws.append([])

    headers = [
        "Date", "Type", "Quantity", "Balance After", "Reason",
        "Reference Type", "Reference ID", "Performed By",
    ]
    ws.append(headers)
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    for mv in sorted(movements, key=lambda m: m.created_at):
        ws.append([
            mv.created_at,
            mv.movement_type,
            int(mv.quantity),
            int(mv.balance_after),
            mv.reason or "",
            mv.reference_type or "",
            mv.reference_id or "",
            mv.performed_by or "",
        ])

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    wb.save(fp)
