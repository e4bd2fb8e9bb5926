# FILE: app/services/id_gen.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from app.models.billing import NumberSeries
from app.utils.timezone import today_local


def _date_key(d: Union[date, datetime]) -> int:
    if isinstance(d, datetime):
        d = d.date()
    return int(d.strftime("%Y%m%d"))


def next_series(db: Session, key: str, on_date: Optional[date] = None) -> int:
    """
    Daily counter per `key`. Row is locked so two cashiers on the same
    day never get the same number.
    """
    dk = _date_key(on_date or today_local())

    row = db.execute(
        select(NumberSeries)
        .where(and_(NumberSeries.key == key, NumberSeries.date_key == dk))
        .with_for_update()
    ).scalar_one_or_none()

    if not row:
        row = NumberSeries(key=key, date_key=dk, next_seq=1)
        db.add(row)
        db.flush()

    seq = row.next_seq
    row.next_seq = seq + 1
    db.flush()
    return seq


def make_receipt_number(
    db: Session,
    *,
    on_date: Optional[date] = None,
    id_width: int = 6,
) -> str:
    d = on_date or today_local()
    seq = next_series(db, "RCP", d)
    return f"RCP/{_date_key(d)}/{seq:0{id_width}d}"
