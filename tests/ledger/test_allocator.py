import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from labstock.database.enums import BatchStatus, MovementType
from labstock.ledger.allocator import AllocationLeg, Candidate, plan_fefo
from labstock.ledger.errors import InsufficientStockError, NotFoundError, ValidationError
from labstock.ledger.tracker import StockState

D = Decimal


@pytest.fixture
def allocator(inventory):
    return inventory.allocator


@pytest.fixture
def receive(inventory, medium, clock):
    def _receive(number, quantity, per_unit, expires_in=None, **kwargs):
        expiration = None if expires_in is None else clock.today + timedelta(days=expires_in)
        return inventory.batches.receive(
            medium.id,
            number,
            quantity,
            volume_per_unit=per_unit,
            expiration_date=expiration,
            **kwargs,
        )

    return _receive


def movement_count(inventory, batch):
    return len(list(inventory.movements.history(batch.id)))


class TestPlanFefo:
    def test_greedy_fill_in_given_order(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        plan = plan_fefo(
            uuid.uuid4(),
            D("15"),
            "ml",
            [Candidate(first, StockState(10)), Candidate(second, StockState(10))],
        )
        assert plan.legs == (AllocationLeg(first, D("10")), AllocationLeg(second, D("5")))
        assert plan.is_satisfiable
        assert plan.available == D("20")

    def test_shortfall_recorded(self):
        plan = plan_fefo(uuid.uuid4(), D("30"), "pcs", [Candidate(uuid.uuid4(), StockState(12))])
        assert plan.shortfall == D("18")
        assert not plan.is_satisfiable

    def test_unit_granular_legs_are_whole(self):
        only = uuid.uuid4()
        plan = plan_fefo(uuid.uuid4(), D("2.5"), "pcs", [Candidate(only, StockState(10))])
        assert plan.legs == (AllocationLeg(only, D("2")),)
        assert plan.shortfall == D("0.5")

    def test_fraction_blocked_by_whole_units_is_flagged(self):
        plan = plan_fefo(uuid.uuid4(), D("2.5"), "ml", [Candidate(uuid.uuid4(), StockState(10))])
        assert plan.short_on_whole_units
        assert not plan_fefo(
            uuid.uuid4(), D("30"), "ml", [Candidate(uuid.uuid4(), StockState(10))]
        ).short_on_whole_units

    def test_no_candidates(self):
        plan = plan_fefo(uuid.uuid4(), D("1"), "ml", [])
        assert plan.legs == ()
        assert plan.available == D("0")


class TestAllocate:
    def test_earliest_expiry_drawn_first(self, allocator, receive, inventory):
        b2 = receive("B2", 1, "10", expires_in=20)
        b1 = receive("B1", 1, "10", expires_in=5)

        legs = allocator.allocate(b1.nomenclature_id, "15", operation_ref="passage-7")

        assert legs == [AllocationLeg(b1.id, D("10")), AllocationLeg(b2.id, D("5"))]
        assert inventory.batches.get(b1.id).status == BatchStatus.DEPLETED
        assert inventory.batches.get(b2.id).current_unit_volume == D("5")
        latest = next(iter(inventory.movements.history(b2.id)))
        assert latest.movement_type == MovementType.CONSUME
        assert latest.operation_ref == "passage-7"
        assert latest.reason == "allocation"

    def test_insufficient_stock_changes_nothing(self, allocator, receive, inventory, medium):
        b1 = receive("B1", 1, "10", expires_in=5)
        b2 = receive("B2", 1, "10", expires_in=20)

        with pytest.raises(InsufficientStockError) as excinfo:
            allocator.allocate(medium.id, "25")

        assert excinfo.value.nomenclature_id == medium.id
        assert excinfo.value.requested == D("25")
        assert excinfo.value.available == D("20")
        assert excinfo.value.shortfall == D("5")
        for batch in (b1, b2):
            assert inventory.batches.get(batch.id).current_unit_volume == D("10")
            assert movement_count(inventory, batch) == 1

    def test_expired_batches_are_excluded(self, allocator, receive, inventory, medium, clock):
        stale = receive("OLD", 1, "100", expires_in=3)
        fresh = receive("NEW", 1, "100", expires_in=30)
        clock.advance(4)

        legs = allocator.allocate(medium.id, "50")

        assert legs == [AllocationLeg(fresh.id, D("50"))]
        assert inventory.batches.get(stale.id).status == BatchStatus.EXPIRED

    def test_expiry_flip_survives_rejection(self, allocator, receive, inventory, medium, clock):
        stale = receive("OLD", 1, "100", expires_in=3)
        clock.advance(4)
        with pytest.raises(InsufficientStockError):
            allocator.allocate(medium.id, "50")
        assert inventory.batches.get(stale.id).status == BatchStatus.EXPIRED

    def test_batches_without_expiry_go_last(self, allocator, receive, medium):
        undated = receive("UNDATED", 1, "100")
        dated = receive("DATED", 1, "100", expires_in=300)
        legs = allocator.allocate(medium.id, "150")
        assert legs == [AllocationLeg(dated.id, D("100")), AllocationLeg(undated.id, D("50"))]

    def test_ties_broken_by_receipt_order(self, allocator, receive, medium):
        first = receive("Z-FIRST", 1, "100", expires_in=10)
        second = receive("A-SECOND", 1, "100", expires_in=10)
        legs = allocator.allocate(medium.id, "120")
        assert [leg.batch_id for leg in legs] == [first.id, second.id]

    def test_reserved_and_depleted_batches_skipped(self, allocator, receive, inventory, medium):
        held = receive("HELD", 1, "100", expires_in=1)
        inventory.batches.reserve(held.id)
        gone = receive("GONE", 1, "100", expires_in=2)
        inventory.batches.apply_consumption(gone.id, "100")
        open_ = receive("OPEN", 1, "100", expires_in=3)

        assert allocator.allocate(medium.id, "30") == [AllocationLeg(open_.id, D("30"))]

    def test_cascade_inside_one_batch(self, allocator, receive, inventory, medium):
        batch = receive("BOTTLES", 3, "500", expires_in=30)
        allocator.allocate(medium.id, "700")
        stored = inventory.batches.get(batch.id)
        assert (stored.quantity, stored.current_unit_volume) == (2, D("300"))

    def test_requested_amount_in_other_unit(self, allocator, receive, medium):
        batch = receive("BOTTLES", 1, "500", expires_in=30)
        assert allocator.allocate(medium.id, "0.25", unit="l") == [
            AllocationLeg(batch.id, D("250"))
        ]

    def test_incompatible_unit(self, allocator, receive, medium):
        receive("BOTTLES", 1, "500", expires_in=30)
        with pytest.raises(ValidationError):
            allocator.allocate(medium.id, "1", unit="mg")

    def test_fractional_pieces_rejected(self, allocator, inventory, tips):
        inventory.batches.receive(tips.id, "T-1", 10)
        with pytest.raises(ValidationError):
            allocator.allocate(tips.id, "1.5")

    def test_unit_granular_allocation(self, allocator, inventory, tips):
        first = inventory.batches.receive(tips.id, "T-1", 4)
        second = inventory.batches.receive(tips.id, "T-2", 10)
        assert allocator.allocate(tips.id, 6) == [
            AllocationLeg(first.id, D("4")),
            AllocationLeg(second.id, D("2")),
        ]

    def test_counted_batch_under_volume_item_cannot_be_split(self, allocator, inventory, medium):
        counted = inventory.batches.receive(medium.id, "U1", 10)

        with pytest.raises(ValidationError):
            allocator.allocate(medium.id, "2.5")

        assert inventory.batches.get(counted.id).quantity == 10
        assert movement_count(inventory, counted) == 1
        assert allocator.allocate(medium.id, "2") == [AllocationLeg(counted.id, D("2"))]

    def test_fraction_left_by_counted_batch_goes_to_next_batch(
        self, allocator, inventory, medium, receive, clock
    ):
        counted = inventory.batches.receive(
            medium.id, "U1", 10, expiration_date=clock.today + timedelta(days=5)
        )
        bottle = receive("BOTTLE", 1, "500", expires_in=30)

        assert allocator.allocate(medium.id, "2.5") == [
            AllocationLeg(counted.id, D("2")),
            AllocationLeg(bottle.id, D("0.5")),
        ]

    def test_request_finer_than_item_resolution(self, allocator, receive, medium):
        receive("BOTTLES", 1, "500", expires_in=30)
        with pytest.raises(ValidationError):
            allocator.allocate(medium.id, "0.0000005", unit="l")

    def test_resolve_request_converts_to_item_unit(self, allocator, medium):
        assert allocator.resolve_request(medium.id, "0.25", unit="l") == D("250")
        assert allocator.resolve_request(medium.id, "7") == D("7")

    def test_unknown_nomenclature(self, allocator):
        with pytest.raises(NotFoundError):
            allocator.allocate(uuid.uuid4(), "1")

    def test_non_positive_request(self, allocator, medium):
        with pytest.raises(ValidationError):
            allocator.allocate(medium.id, "0")


class TestPlan:
    def test_plan_is_a_dry_run(self, allocator, receive, inventory, medium):
        b1 = receive("B1", 1, "10", expires_in=5)
        b2 = receive("B2", 1, "10", expires_in=20)

        plan = allocator.plan(medium.id, "15")

        assert plan.legs == (AllocationLeg(b1.id, D("10")), AllocationLeg(b2.id, D("5")))
        assert plan.unit == "ml"
        assert inventory.batches.get(b1.id).current_unit_volume == D("10")
        assert movement_count(inventory, b1) == 1

    def test_plan_reports_shortfall_instead_of_raising(self, allocator, receive, medium):
        receive("B1", 1, "10", expires_in=5)
        plan = allocator.plan(medium.id, "25")
        assert plan.shortfall == D("15")
        assert plan.available == D("10")

    def test_plan_skips_batches_past_their_date(self, allocator, receive, medium, clock):
        receive("OLD", 1, "10", expires_in=1)
        clock.advance(2)
        assert allocator.plan(medium.id, "5").legs == ()
