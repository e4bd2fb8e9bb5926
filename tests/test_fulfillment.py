from datetime import date

import pytest

from app.core.errors import (
    AlreadyFulfilled,
    BatchMismatch,
    InsufficientStock,
    InvalidChoice,
    InvalidQuantity,
    NoAllocatableStock,
    NotFound,
)
from app.models.ipd import MaterialUsage
from app.models.pharmacy_inventory import InventoryBatch, MovementType, StockMovement
from app.models.pharmacy_prescription import DemandType, Prescription
from app.schemas.pharmacy import FulfillmentIn
from app.services.inventory import deduct_batch_stock
from app.services.pharmacy import (
    _mark_fulfilled,
    dispense_fefo,
    dispense_movements,
    fulfill,
    fulfill_bulk,
)
from tests.conftest import Seed

FAR = date(2030, 1, 1)
TODAY = date(2025, 1, 15)


def _stock(db, batch_id):
    db.expire_all()
    return db.get(InventoryBatch, batch_id).stock_quantity


def _out_movements(db, **filters):
    q = db.query(StockMovement).filter(StockMovement.movement_type == MovementType.OUT.value)
    for k, v in filters.items():
        q = q.filter(getattr(StockMovement, k) == v)
    return q.all()


class TestFulfill:

    def test_happy_path(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=20, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=6)

        rec = fulfill(db, rx.id, batch.id, 6, "ph-1", notes="counter 2")

        assert rec.is_fulfilled is True
        assert rec.dispensed_quantity == 6
        assert rec.batch_id == batch.id
        assert rec.fulfilled_by == "ph-1"
        assert rec.fulfilled_at is not None
        assert _stock(db, batch.id) == 14

        mv = _out_movements(db, reference_id=rx.id)
        assert len(mv) == 1
        assert mv[0].quantity == -6
        assert mv[0].balance_after == 14
        assert mv[0].reference_type == "prescription"
        assert mv[0].performed_by == "ph-1"

    def test_second_fulfillment_is_rejected_without_side_effects(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=20, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=5)
        fulfill(db, rx.id, batch.id, 5, "ph-1")

        with pytest.raises(AlreadyFulfilled):
            fulfill(db, rx.id, batch.id, 5, "ph-2")

        assert _stock(db, batch.id) == 15
        assert len(_out_movements(db, reference_id=rx.id)) == 1
        assert db.get(Prescription, rx.id).fulfilled_by == "ph-1"

    def test_insufficient_stock_names_available_and_requested(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=3, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=5)

        with pytest.raises(InsufficientStock) as exc_info:
            fulfill(db, rx.id, batch.id, 5, "ph-1")

        err = exc_info.value
        assert err.available == 3
        assert err.requested == 5
        assert "Available: 3" in str(err) and "Requested: 5" in str(err)
        assert _stock(db, batch.id) == 3
        assert db.get(Prescription, rx.id).is_fulfilled is False

    def test_missing_record_or_batch(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=3, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=1)

        with pytest.raises(NotFound):
            fulfill(db, "missing", batch.id, 1, "ph-1")
        with pytest.raises(NotFound):
            fulfill(db, rx.id, "missing", 1, "ph-1")

    def test_batch_of_another_item(self, db, seed):
        item = seed.item()
        other = seed.item(name="Amoxicillin 500mg")
        batch = seed.batch(other, stock=10, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=1)

        with pytest.raises(BatchMismatch):
            fulfill(db, rx.id, batch.id, 1, "ph-1")

    def test_more_than_required_rejected(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=10, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=2)

        with pytest.raises(InvalidQuantity):
            fulfill(db, rx.id, batch.id, 3, "ph-1")

    def test_material_usage_demand(self, db, seed):
        gauze = seed.item(name="Sterile Gauze", category="material")
        batch = seed.batch(gauze, stock=10, expiry=FAR)
        usage = seed.material_usage(seed.visit("inpatient"), gauze, quantity=4)

        rec = fulfill(db, usage.id, batch.id, 4, "nurse-1",
                      demand_type=DemandType.MATERIAL_USAGE)

        assert isinstance(rec, MaterialUsage)
        assert rec.is_fulfilled is True
        assert _out_movements(db, reference_id=usage.id)[0].reference_type == "material_usage"

    def test_unknown_demand_type_is_typed(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=5, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=1)

        with pytest.raises(InvalidChoice) as exc_info:
            fulfill(db, rx.id, batch.id, 1, "ph-1", demand_type="blood_bag")

        assert "blood_bag" in str(exc_info.value)
        assert _stock(db, batch.id) == 5


class TestFulfillBulk:

    def test_all_applied(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=10, expiry=FAR)
        visit = seed.visit()
        rx1 = seed.prescription(visit, item, quantity=4)
        rx2 = seed.prescription(visit, item, quantity=6)

        records = fulfill_bulk(db, [
            FulfillmentIn(demand_id=rx1.id, batch_id=batch.id, quantity=4, performed_by="ph-1"),
            FulfillmentIn(demand_id=rx2.id, batch_id=batch.id, quantity=6, performed_by="ph-1"),
        ])

        assert [r.is_fulfilled for r in records] == [True, True]
        assert _stock(db, batch.id) == 0

    def test_one_bad_request_means_nothing_applied(self, db, seed):
        item = seed.item()
        b1 = seed.batch(item, stock=10, expiry=FAR)
        b2 = seed.batch(item, stock=1, expiry=FAR)
        visit = seed.visit()
        rx1 = seed.prescription(visit, item, quantity=4)
        rx2 = seed.prescription(visit, item, quantity=5)

        with pytest.raises(InsufficientStock):
            fulfill_bulk(db, [
                FulfillmentIn(demand_id=rx1.id, batch_id=b1.id, quantity=4, performed_by="ph-1"),
                FulfillmentIn(demand_id=rx2.id, batch_id=b2.id, quantity=5, performed_by="ph-1"),
            ])

        assert _stock(db, b1.id) == 10
        assert _stock(db, b2.id) == 1
        assert db.get(Prescription, rx1.id).is_fulfilled is False
        assert _out_movements(db) == []

    def test_quantities_on_one_batch_are_summed(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=8, expiry=FAR)
        visit = seed.visit()
        rx1 = seed.prescription(visit, item, quantity=5)
        rx2 = seed.prescription(visit, item, quantity=5)

        with pytest.raises(InsufficientStock) as exc_info:
            fulfill_bulk(db, [
                FulfillmentIn(demand_id=rx1.id, batch_id=batch.id, quantity=5, performed_by="ph-1"),
                FulfillmentIn(demand_id=rx2.id, batch_id=batch.id, quantity=5, performed_by="ph-1"),
            ])

        assert exc_info.value.requested == 10
        assert _stock(db, batch.id) == 8

    def test_already_fulfilled_member_blocks_batch(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=10, expiry=FAR)
        visit = seed.visit()
        done = seed.prescription(visit, item, quantity=1, fulfilled=True)
        rx = seed.prescription(visit, item, quantity=2)

        with pytest.raises(AlreadyFulfilled):
            fulfill_bulk(db, [
                FulfillmentIn(demand_id=rx.id, batch_id=batch.id, quantity=2, performed_by="ph-1"),
                FulfillmentIn(demand_id=done.id, batch_id=batch.id, quantity=1, performed_by="ph-1"),
            ])

        assert _stock(db, batch.id) == 10
        assert db.get(Prescription, rx.id).is_fulfilled is False

    def test_duplicate_demand_in_one_request(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=10, expiry=FAR)
        rx = seed.prescription(seed.visit(), item, quantity=2)
        req = FulfillmentIn(demand_id=rx.id, batch_id=batch.id, quantity=2, performed_by="ph-1")

        with pytest.raises(AlreadyFulfilled):
            fulfill_bulk(db, [req, req])

        assert _stock(db, batch.id) == 10


class TestDispenseFefo:

    def test_spans_batches_in_expiry_order(self, db, seed):
        item = seed.item()
        early = seed.batch(item, stock=10, expiry=date(2025, 3, 1))
        late = seed.batch(item, stock=20, expiry=date(2025, 9, 1))
        rx = seed.prescription(seed.visit(), item, quantity=15)

        rec, allocs = dispense_fefo(db, rx.id, "ph-1", today=TODAY)

        assert [(a.batch.id, a.quantity) for a in allocs] == [(early.id, 10), (late.id, 5)]
        assert rec.dispensed_quantity == 15
        assert rec.batch_id == early.id
        assert _stock(db, early.id) == 0
        assert _stock(db, late.id) == 15
        assert len(_out_movements(db, reference_id=rx.id)) == 2

        mv = dispense_movements(db, rx.id)
        assert [(m.batch_id, m.quantity) for m in mv] == [(early.id, -10), (late.id, -5)]

    def test_short_stock_rejected_unless_partial_allowed(self, db, seed):
        item = seed.item()
        batch = seed.batch(item, stock=4, expiry=date(2025, 3, 1))
        rx = seed.prescription(seed.visit(), item, quantity=10)

        with pytest.raises(NoAllocatableStock) as exc_info:
            dispense_fefo(db, rx.id, "ph-1", today=TODAY)
        assert exc_info.value.allocated == 4
        assert _stock(db, batch.id) == 4

        rec, _ = dispense_fefo(db, rx.id, "ph-1", allow_partial=True, today=TODAY)
        assert rec.dispensed_quantity == 4
        assert _stock(db, batch.id) == 0

    def test_nothing_allocatable_fails_even_with_partial(self, db, seed):
        item = seed.item()
        seed.batch(item, stock=4, expiry=date(2024, 3, 1))
        rx = seed.prescription(seed.visit(), item, quantity=1)

        with pytest.raises(NoAllocatableStock):
            dispense_fefo(db, rx.id, "ph-1", allow_partial=True, today=TODAY)


class TestRacingDispensers:
    """Two sessions, each holding a stale read, racing for the same 5 units"""

    def test_exactly_one_wins_and_stock_ends_at_zero(self, file_session_factory):
        s1 = file_session_factory()
        s2 = file_session_factory()
        try:
            seed = Seed(s1)
            item = seed.item()
            batch = seed.batch(item, stock=5, expiry=FAR)
            rx = seed.prescription(seed.visit(), item, quantity=5)

            # second pharmacist loads the screen before the first one commits
            stale_rx = s2.get(Prescription, rx.id)
            stale_batch = s2.get(InventoryBatch, batch.id)
            assert stale_rx.is_fulfilled is False
            assert stale_batch.stock_quantity == 5

            fulfill(s1, rx.id, batch.id, 5, "ph-1")

            # the conditional updates refuse the stale view
            with pytest.raises(InsufficientStock):
                deduct_batch_stock(s2, stale_batch, 5)
            s2.rollback()

            stale_rx = s2.get(Prescription, rx.id)
            with pytest.raises(AlreadyFulfilled):
                _mark_fulfilled(s2, stale_rx, batch_id=batch.id, dispensed_qty=5,
                                performed_by="ph-2", notes=None)
            s2.rollback()

            # and the full operation reports the loss cleanly
            with pytest.raises((AlreadyFulfilled, InsufficientStock)):
                fulfill(s2, rx.id, batch.id, 5, "ph-2")

            assert _stock(s2, batch.id) == 0
            assert len(_out_movements(s2, reference_id=rx.id)) == 1
            assert s2.get(Prescription, rx.id).fulfilled_by == "ph-1"
        finally:
            s1.close()
            s2.close()


class TestDispenseMovements:

    def test_empty_before_dispense(self, db, seed):
        item = seed.item()
        rx = seed.prescription(seed.visit(), item, quantity=1)

        assert dispense_movements(db, rx.id) == []

    def test_unknown_record(self, db):
        with pytest.raises(NotFound):
            dispense_movements(db, "missing")
