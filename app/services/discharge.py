# FILE: app/services/discharge.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.billing import Billing, PaymentStatus
from app.services.billing_engine import get_encounter_or_404
from app.services.billing_math import format_money
from app.services.billing_service import get_billing_for_encounter


@dataclass
class DischargeCheck:
    allowed: bool
    reason: Optional[str] = None
    billing: Optional[Billing] = None


def can_discharge(db: Session, encounter_id: str) -> DischargeCheck:
    """A patient leaves only once the encounter's bill is fully paid. Read-only."""
    get_encounter_or_404(db, encounter_id)
    billing = get_billing_for_encounter(db, encounter_id)
    if not billing:
        return DischargeCheck(allowed=False, reason="billing not created yet")

    if billing.payment_status != PaymentStatus.PAID.value:
        remaining = format_money(billing.remaining_amount, settings.CURRENCY_PREFIX)
        return DischargeCheck(
            allowed=False,
            reason=f"billing is {billing.payment_status}, remaining {remaining}",
            billing=billing,
        )

    return DischargeCheck(allowed=True, billing=billing)
