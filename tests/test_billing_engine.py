from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.core.errors import BillingAlreadyExists, NotFound
from app.models.billing import Billing, BillingItem
from app.services.billing_engine import billing_breakdown, compute_billing, room_days
from app.services.billing_math import (
    compute_totals,
    format_money,
    money2,
    resolve_discount,
)
from app.services.billing_payment_service import apply_discount_and_pay
from app.services import billing_service
from app.services.billing_service import (
    billing_statistics,
    create_billing,
    create_or_update_billing,
    get_billing_details,
    list_pending_billings,
)

NOW = datetime(2025, 1, 15, 12, 0)
FAR = date(2030, 1, 1)


class TestBillingMath:

    def test_percentage_discount_wins(self):
        amount, pct = resolve_discount(Decimal("100000"), discount=5000, discount_percentage=10)
        assert amount == Decimal("10000.00")
        assert pct == Decimal("10")

    def test_flat_discount_clears_percentage(self):
        amount, pct = resolve_discount(Decimal("100000"), discount="7500")
        assert amount == Decimal("7500.00")
        assert pct is None

    def test_totals_and_status(self):
        t = compute_totals(Decimal("100000"), Decimal("10000"), 0, Decimal("20000"), Decimal("30000"))
        assert t["total_amount"] == Decimal("90000.00")
        assert t["patient_payable"] == Decimal("70000.00")
        assert t["remaining_amount"] == Decimal("40000.00")
        assert t["payment_status"] == "partial"

    def test_half_up_rounding(self):
        assert money2("0.005") == Decimal("0.01")
        assert money2(0.1 + 0.2) == Decimal("0.30")

    def test_format_money(self):
        assert format_money(Decimal("40000"), "Rp") == "Rp 40,000.00"


class TestRoomDays:

    @pytest.mark.parametrize("hours,expected", [(1, 1), (24, 1), (25, 2), (60, 3)])
    def test_ceiling_minimum_one(self, hours, expected):
        start = datetime(2025, 1, 1, 8, 0)
        assert room_days(start, start + timedelta(hours=hours), NOW) == expected

    def test_open_assignment_counts_to_now(self):
        assert room_days(NOW - timedelta(days=2, hours=12), None, NOW) == 3


class TestComputeBilling:

    def test_outpatient_components(self, db, seed):
        visit = seed.outpatient_bill_100k()
        seed.service(service_type="procedure", code="89.03", price="120000")
        seed.procedure(visit, code="89.03")
        seed.procedure(visit, code="99.99")  # not in catalog
        seed.lab_order(visit, price="75000")
        seed.lab_order(visit, price="80000", status="ordered")

        comp = compute_billing(db, visit.id, now=NOW)

        assert comp.subtotal == Decimal("295000.00")
        cats = [i.category for i in comp.items]
        assert cats == ["service", "service", "procedure", "laboratory", "medication"]
        drug = comp.items[-1]
        assert drug.item_type == "drug"
        assert drug.quantity == 10
        assert drug.total_price == Decimal("25000.00")

    def test_outpatient_bills_prescribed_quantity_even_if_not_dispensed(self, db, seed):
        drug = seed.item(price="1000")
        visit = seed.visit()
        seed.prescription(visit, drug, quantity=7)

        comp = compute_billing(db, visit.id, now=NOW)

        assert [(i.item_type, i.quantity) for i in comp.items] == [("drug", 7)]

    def test_inpatient_rooms_materials_and_fulfilled_drugs(self, db, seed):
        visit = seed.visit("inpatient")
        drug = seed.item(price="2000")
        seed.prescription(visit, drug, quantity=5, fulfilled=True)
        seed.prescription(visit, drug, quantity=9)  # not dispensed yet
        gauze = seed.item(name="Gauze", price="9999", category="material")
        seed.material_usage(visit, gauze, quantity=4, unit_price="1500")
        ward = seed.room(daily_rate="300000", room_type="ward")
        vip = seed.room(daily_rate="500000")
        seed.bed(visit, ward, assigned_at=datetime(2025, 1, 10, 8), discharged_at=datetime(2025, 1, 11, 9))
        seed.bed(visit, vip, assigned_at=datetime(2025, 1, 11, 9))

        comp = compute_billing(db, visit.id, now=NOW)
        by_type = {}
        for i in comp.items:
            by_type.setdefault(i.item_type, []).append(i)

        assert [(i.quantity, i.total_price) for i in by_type["drug"]] == [(5, Decimal("10000.00"))]
        assert [(i.quantity, i.unit_price) for i in by_type["material"]] == [(4, Decimal("1500.00"))]
        # ward: 25h -> 2 days; VIP: 4 days 3h open -> 5 days
        assert [(i.quantity, i.total_price) for i in by_type["room"]] == [
            (2, Decimal("600000.00")),
            (5, Decimal("2500000.00")),
        ]
        assert comp.subtotal == Decimal("3116000.00")

    def test_outpatient_ignores_rooms_and_materials(self, db, seed):
        visit = seed.visit()
        gauze = seed.item(name="Gauze", category="material")
        seed.material_usage(visit, gauze, quantity=1)
        seed.bed(visit, seed.room(), assigned_at=datetime(2025, 1, 10))

        assert compute_billing(db, visit.id, now=NOW).items == []

    def test_pure_and_repeatable(self, db, seed):
        visit = seed.outpatient_bill_100k()

        first = compute_billing(db, visit.id, now=NOW)
        second = compute_billing(db, visit.id, now=NOW)

        assert first == second
        assert db.query(Billing).count() == 0

    def test_breakdown(self, db, seed):
        visit = seed.outpatient_bill_100k()

        bd = billing_breakdown(compute_billing(db, visit.id, now=NOW))

        assert bd["service"] == {"total": Decimal("75000.00"), "count": 2}
        assert bd["medication"] == {"total": Decimal("25000.00"), "count": 1}
        assert bd["room"]["count"] == 0

    def test_unknown_encounter(self, db):
        with pytest.raises(NotFound):
            compute_billing(db, "nope")


class TestCreateBilling:

    def test_strict_create_then_duplicate(self, db, seed):
        visit = seed.outpatient_bill_100k()

        billing = create_billing(db, visit.id, created_by="cashier-1", discount_percentage=10)

        assert billing.subtotal == Decimal("100000.00")
        assert billing.discount == Decimal("10000.00")
        assert billing.patient_payable == Decimal("90000.00")
        assert billing.remaining_amount == Decimal("90000.00")
        assert billing.payment_status == "pending"
        assert [i.seq for i in billing.items] == [1, 2, 3]

        with pytest.raises(BillingAlreadyExists):
            create_billing(db, visit.id)

    def test_extra_items(self, db, seed):
        visit = seed.outpatient_bill_100k()

        billing = create_billing(db, visit.id, extra_items=[{
            "item_type": "service",
            "item_name": "Ambulance",
            "unit_price": Decimal("150000"),
        }])

        assert billing.subtotal == Decimal("250000.00")
        assert billing.items[-1].item_name == "Ambulance"

    def test_create_or_update_is_idempotent(self, db, seed):
        visit = seed.outpatient_bill_100k()

        b1 = create_or_update_billing(db, visit.id, now=NOW)
        b2 = create_or_update_billing(db, visit.id, now=NOW)

        assert b1.id == b2.id
        assert b2.subtotal == Decimal("100000.00")
        assert db.query(BillingItem).filter(BillingItem.billing_id == b2.id).count() == 3

    def test_recompute_keeps_discount_insurance_and_payments(self, db, seed):
        visit = seed.outpatient_bill_100k()
        billing = create_or_update_billing(db, visit.id, discount_percentage=10,
                                           insurance_coverage=20000, now=NOW)
        billing.paid_amount = Decimal("30000")
        db.commit()

        seed.prescription(visit, seed.item(price="5000"), quantity=2)
        again = create_or_update_billing(db, visit.id, now=NOW)

        assert again.subtotal == Decimal("110000.00")
        assert again.discount == Decimal("11000.00")
        assert again.insurance_coverage == Decimal("20000.00")
        assert again.patient_payable == Decimal("79000.00")
        assert again.paid_amount == Decimal("30000.00")
        assert again.remaining_amount == Decimal("49000.00")
        assert again.payment_status == "partial"

    def test_recompute_keeps_manual_lines(self, db, seed):
        visit = seed.outpatient_bill_100k()
        billing = create_billing(db, visit.id, extra_items=[{
            "item_type": "service",
            "item_name": "Ambulance",
            "unit_price": Decimal("50000"),
        }])
        apply_discount_and_pay(db, billing.id, Decimal("150000"), "card", received_by="c")

        again = create_or_update_billing(db, visit.id, now=NOW)

        assert again.subtotal == Decimal("150000.00")
        assert [(i.item_name, i.category) for i in again.items][-1] == ("Ambulance", "manual")
        assert [i.seq for i in again.items] == [1, 2, 3, 4]
        assert again.remaining_amount == Decimal("0.00")
        assert again.payment_status == "paid"

    def test_recompute_losing_create_race_is_typed(self, db, seed, monkeypatch):
        visit = seed.outpatient_bill_100k()
        create_billing(db, visit.id)
        # the competing row is committed but invisible to this request's read
        monkeypatch.setattr(billing_service, "get_billing_for_encounter",
                            lambda *a, **kw: None)

        with pytest.raises(BillingAlreadyExists):
            create_or_update_billing(db, visit.id, now=NOW)

        assert db.query(Billing).count() == 1

    def test_details_pending_and_statistics(self, db, seed):
        visit = seed.outpatient_bill_100k()
        create_billing(db, visit.id)

        details = get_billing_details(db, visit.id)
        assert len(details.items) == 3
        assert [b.encounter_id for b in list_pending_billings(db)] == [visit.id]

        stats = billing_statistics(db)
        assert stats["total_billings"] == 1
        assert stats["pending"] == 1
        assert stats["pending_revenue"] == Decimal("100000.00")
        assert stats["total_revenue"] == Decimal("0.00")

    def test_details_missing(self, db, seed):
        with pytest.raises(NotFound):
            get_billing_details(db, seed.visit().id)
