"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (StaticPool keeps the one
connection alive for the whole test) plus a `seed` helper that writes the
read-only collaborator rows (catalog, encounters, rooms ...) the engine needs.
"""

import os
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Generator, Optional

# Ensure test environment before the app reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BILLING_DEFAULT_TAX"] = "0"
os.environ["CURRENCY_PREFIX"] = "Rp"
os.environ["TIMEZONE"] = "UTC"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.init_db import create_tables
from app.models.billing import Service
from app.models.ipd import BedAssignment, MaterialUsage, Room
from app.models.lis import LabOrder
from app.models.opd import Procedure, Visit, VisitType
from app.models.pharmacy_inventory import InventoryBatch, InventoryItem
from app.models.pharmacy_prescription import Prescription

TODAY = date(2025, 1, 15)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Shared on-disk database so two sessions really are two connections."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False},
    )
    create_tables(eng)
    yield sessionmaker(bind=eng, autocommit=False, autoflush=False)
    eng.dispose()


# ============================================================================
# SEED HELPERS
# ============================================================================


class Seed:
    """Writes collaborator rows and commits, so engine calls see them."""

    def __init__(self, db: Session):
        self.db = db
        self._n = 0

    def _code(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}-{self._n:04d}"

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    # ---- inventory ----

    def item(self, *, name: str = "Paracetamol 500mg", price="2500",
             category: str = "drug", minimum_stock: int = 10,
             code: Optional[str] = None) -> InventoryItem:
        return self._save(
            InventoryItem(code=code or self._code("ITM"),
                          name=name,
                          category=category,
                          unit="tab",
                          price=Decimal(str(price)),
                          minimum_stock=minimum_stock))

    def batch(self, item: InventoryItem, *, stock: int, expiry: date,
              batch_number: Optional[str] = None,
              received_at: Optional[datetime] = None) -> InventoryBatch:
        return self._save(
            InventoryBatch(item_id=item.id,
                           batch_number=batch_number or self._code("B"),
                           expiry_date=expiry,
                           stock_quantity=stock,
                           received_at=received_at or datetime(2024, 1, 1)))

    # ---- encounters ----

    def visit(self, visit_type: str = VisitType.OUTPATIENT.value) -> Visit:
        return self._save(
            Visit(visit_number=self._code("V"),
                  visit_type=visit_type,
                  patient_name="Budi Santoso",
                  patient_mr_number=self._code("MR")))

    def prescription(self, visit: Visit, item: InventoryItem, *, quantity: int,
                     fulfilled: bool = False) -> Prescription:
        return self._save(
            Prescription(encounter_id=visit.id,
                         item_id=item.id,
                         quantity=quantity,
                         dosage="500mg",
                         frequency="3x daily",
                         is_fulfilled=fulfilled,
                         dispensed_quantity=quantity if fulfilled else None))

    def material_usage(self, visit: Visit, item: InventoryItem, *, quantity: int,
                       unit_price="1500") -> MaterialUsage:
        unit_price = Decimal(str(unit_price))
        return self._save(
            MaterialUsage(encounter_id=visit.id,
                          item_id=item.id,
                          material_name=item.name,
                          quantity=quantity,
                          unit_price=unit_price,
                          total_price=unit_price * quantity))

    def procedure(self, visit: Visit, *, code: Optional[str],
                  status: str = "completed") -> Procedure:
        return self._save(
            Procedure(encounter_id=visit.id,
                      code=code,
                      description=f"Procedure {code}",
                      status=status))

    def lab_order(self, visit: Visit, *, price="75000",
                  status: str = "verified") -> LabOrder:
        return self._save(
            LabOrder(encounter_id=visit.id,
                     order_number=self._code("LAB"),
                     test_code="CBC",
                     test_name="Complete Blood Count",
                     price=Decimal(str(price)),
                     status=status))

    # ---- catalog / rooms ----

    def service(self, *, service_type: str, price, code: Optional[str] = None,
                name: Optional[str] = None, is_active: bool = True) -> Service:
        return self._save(
            Service(code=code or self._code("SVC"),
                    name=name or service_type.title(),
                    service_type=service_type,
                    price=Decimal(str(price)),
                    is_active=is_active))

    def room(self, *, daily_rate="300000", room_type: str = "VIP") -> Room:
        return self._save(
            Room(room_number=self._code("R"),
                 room_type=room_type,
                 daily_rate=Decimal(str(daily_rate))))

    def bed(self, visit: Visit, room: Room, *, assigned_at: datetime,
            discharged_at: Optional[datetime] = None) -> BedAssignment:
        return self._save(
            BedAssignment(encounter_id=visit.id,
                          room_id=room.id,
                          bed_number="1",
                          assigned_at=assigned_at,
                          discharged_at=discharged_at))

    # ---- composite ----

    def outpatient_bill_100k(self):
        """
        Outpatient encounter whose bill comes to exactly 100,000:
        administration 25,000 + consultation 50,000 + 10 x 2,500 drug.
        """
        self.service(service_type="administration", price="25000")
        self.service(service_type="consultation", price="50000")
        drug = self.item(price="2500")
        visit = self.visit()
        self.prescription(visit, drug, quantity=10)
        return visit


@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)


# ============================================================================
# API CLIENT
# ============================================================================


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    from app.api.deps import get_db
    from app.main import app

    def _override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def days():
    """Shorthand: days(n) -> TODAY + n."""
    return lambda n: TODAY + timedelta(days=n)
