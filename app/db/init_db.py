# app/db/init_db.py
from __future__ import annotations

import argparse
from decimal import Decimal

from sqlalchemy import inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.base import Base

# Import all models so metadata is complete
import app.models  # noqa: F401
from app.models.billing import Service

DEFAULT_SERVICES = [
    # code, name, service_type, price
    ("ADM-001", "Registration Administration", "administration", Decimal("25000")),
    ("CONS-GP", "General Practitioner Consultation", "consultation", Decimal("50000")),
]


def create_tables(bind: Engine, *, fresh: bool = False) -> None:
    if fresh:
        Base.metadata.drop_all(bind=bind)
    Base.metadata.create_all(bind=bind)


def seed_services(db: Session) -> int:
    """Insert missing default fee services; safe to run multiple times."""
    added = 0
    for code, name, service_type, price in DEFAULT_SERVICES:
        exists = db.execute(select(Service.id).where(Service.code == code)).first()
        if not exists:
            db.add(Service(code=code, name=name, service_type=service_type, price=price))
            added += 1
    return added


def run(fresh: bool = False) -> None:
    from app.db.session import engine

    if fresh:
        print("WARNING: Dropping ALL tables (dev only) …")
    print("Creating all missing tables …")
    create_tables(engine, fresh=fresh)
    print("Existing tables:", sorted(inspect(engine).get_table_names()))

    try:
        with Session(engine) as db:
            n = seed_services(db)
            db.commit()
            print(f"Default services seeded ({n} inserted).")
    except SQLAlchemyError as e:
        print("Seeding failed:", e)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed default services).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
