# FILE: app/services/pharmacy_stock_alerts.py
from __future__ import annotations

from datetime import date
from typing import List, Optional, Dict, Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.pharmacy_inventory import InventoryBatch, InventoryItem
from app.services.inventory import get_batches_for_item, get_item_or_404
from app.utils.timezone import today_local


def days_until_expiry(expiry_date: date, today: Optional[date] = None) -> int:
    today = today or today_local()
    return (expiry_date - today).days


def expiry_alert_level(days_left: int) -> str:
    if days_left < 0:
        return "expired"
    if days_left <= settings.EXPIRY_ALERT_DAYS:
        return "expiring_soon"
    if days_left <= settings.EXPIRY_WARNING_DAYS:
        return "warning"
    return "safe"


def stock_alert_level(current_stock: int, minimum_stock: int) -> str:
    if current_stock == 0:
        return "critical"
    if current_stock <= minimum_stock:
        return "low"
    return "normal"


def needs_reorder(current_stock: int, minimum_stock: int) -> bool:
    return current_stock <= minimum_stock


def suggest_reorder_quantity(
    current_stock: int,
    minimum_stock: int,
    average_monthly_usage: int = 0,
) -> int:
    # enough to reach 3x minimum or 2 months of usage, whichever is higher
    target = max(minimum_stock * 3, average_monthly_usage * 2)
    return max(target - current_stock, minimum_stock)


def batch_row(batch: InventoryBatch, today: Optional[date] = None) -> Dict[str, Any]:
    days_left = days_until_expiry(batch.expiry_date, today)
    return {
        "id": batch.id,
        "batch_number": batch.batch_number,
        "expiry_date": batch.expiry_date,
        "stock_quantity": int(batch.stock_quantity or 0),
        "supplier": batch.supplier,
        "days_until_expiry": days_left,
        "expiry_alert_level": expiry_alert_level(days_left),
    }


def item_stock_summary(
    db: Session,
    item_id: str,
    *,
    today: Optional[date] = None,
    include_empty: bool = False,
) -> Dict[str, Any]:
    """Per-item stock card: batches with expiry levels + item stock level."""
    today = today or today_local()
    item: InventoryItem = get_item_or_404(db, item_id)
    batches = get_batches_for_item(db, item_id, include_empty=include_empty)

    rows: List[Dict[str, Any]] = [batch_row(b, today) for b in batches]
    total = sum(r["stock_quantity"] for r in rows)
    available = sum(r["stock_quantity"] for r in rows
                    if r["expiry_alert_level"] != "expired")
    minimum = int(item.minimum_stock or 0)

    return {
        "item_id": item.id,
        "item_name": item.name,
        "unit": item.unit,
        "minimum_stock": minimum,
        "total_stock": total,
        "available_stock": available,
        "stock_alert_level": stock_alert_level(available, minimum),
        "needs_reorder": needs_reorder(available, minimum),
        "suggested_reorder_quantity": (
            suggest_reorder_quantity(available, minimum)
            if needs_reorder(available, minimum) else 0),
        "batches": rows,
    }
