# FILE: app/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from app.core.config import settings


def hospital_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in hospital local time.
    DateTime columns are naive, so comparisons stay naive on both sides.
    """
    return datetime.now(hospital_tz()).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()
