import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from labstock.database.db_session import session_scope
from labstock.database.enums import BatchStatus, MovementType
from labstock.database.inventory import Batch
from labstock.ledger.errors import NotFoundError, ValidationError
from labstock.ledger.movements import MovementLog

D = Decimal


@pytest.fixture
def log(inventory):
    return inventory.movements


@pytest.fixture
def bottles(inventory, medium):
    return inventory.batches.receive(medium.id, "LOT-A", 3, volume_per_unit="500")


class TestAppend:
    @pytest.mark.parametrize(
        "movement_type,amount,reason",
        [
            (MovementType.CONSUME, "0", "consumption"),
            (MovementType.CONSUME, "5", "consumption"),
            (MovementType.RECEIVE, "-5", "receipt"),
            (MovementType.ADJUST, "0", "recount"),
            (MovementType.ADJUST, "5", " "),
        ],
    )
    def test_malformed_movements_rejected(
        self, log, session_factory, bottles, movement_type, amount, reason
    ):
        with pytest.raises(ValidationError):
            with session_scope(session_factory) as session:
                log.append(
                    session,
                    batch_id=bottles.id,
                    movement_type=movement_type,
                    amount=amount,
                    quantity_delta=0,
                    volume_delta=None,
                    quantity_after=3,
                    volume_after="500",
                    reason=reason,
                )
        assert len(list(log.history(bottles.id))) == 1

    def test_append_shares_callers_transaction(self, log, session_factory, bottles):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                log.append(
                    session,
                    batch_id=bottles.id,
                    movement_type=MovementType.ADJUST,
                    amount="-1",
                    quantity_delta=0,
                    volume_delta="-1",
                    quantity_after=3,
                    volume_after="499",
                    reason="recount",
                )
                raise RuntimeError("caller failed after appending")
        assert len(list(log.history(bottles.id))) == 1


class TestHistory:
    def test_newest_first(self, inventory, log, bottles):
        inventory.batches.apply_consumption(bottles.id, "100")
        inventory.batches.apply_adjustment(bottles.id, "-50", "spillage")
        types = [m.movement_type for m in log.history(bottles.id)]
        assert types == [MovementType.ADJUST, MovementType.CONSUME, MovementType.RECEIVE]

    def test_history_is_restartable_and_live(self, inventory, log, bottles):
        history = log.history(bottles.id)
        assert len(list(history)) == 1
        inventory.batches.apply_consumption(bottles.id, "10")
        assert len(list(history)) == 2
        assert len(list(history)) == 2

    def test_streams_in_chunks(self, session_factory, inventory, bottles, clock):
        small_chunks = MovementLog(session_factory, today=clock, chunk_size=2)
        for _ in range(5):
            inventory.batches.apply_consumption(bottles.id, "1")
        amounts = [m.amount for m in small_chunks.history(bottles.id)]
        assert amounts == [D("-1")] * 5 + [D("1500")]

    def test_unknown_batch(self, log):
        with pytest.raises(NotFoundError):
            log.history(uuid.uuid4())


class TestReplay:
    def test_replay_matches_live_record(self, inventory, log, bottles):
        inventory.batches.apply_consumption(bottles.id, "700")
        inventory.batches.apply_adjustment(bottles.id, "150", "recount")
        inventory.batches.apply_consumption(bottles.id, "20")

        replayed = log.replay(bottles.id)
        live = inventory.batches.get(bottles.id)
        assert (replayed.quantity, replayed.current_unit_volume) == (
            live.quantity,
            live.current_unit_volume,
        )
        assert replayed.movement_count == 4
        assert replayed.total_amount == D("1500") - D("700") + D("150") - D("20")
        assert replayed.snapshot_breaks == ()

    def test_replay_is_idempotent(self, inventory, log, bottles):
        inventory.batches.apply_consumption(bottles.id, "333.333")
        assert log.replay(bottles.id) == log.replay(bottles.id)

    def test_replay_unit_granular(self, inventory, log, tips):
        batch = inventory.batches.receive(tips.id, "T-1", 50)
        inventory.batches.apply_consumption(batch.id, 8)
        replayed = log.replay(batch.id)
        assert replayed.quantity == 42
        assert replayed.current_unit_volume is None


class TestReconcile:
    def test_consistent_after_mixed_activity(self, inventory, log, bottles):
        inventory.batches.apply_consumption(bottles.id, "1200")
        inventory.batches.reserve(bottles.id)
        inventory.batches.dispose(bottles.id, "protocol_complete")
        report = log.reconcile(bottles.id)
        assert report.is_consistent, report.mismatches
        assert report.derived_status == BatchStatus.DEPLETED

    def test_detects_tampered_quantity(self, inventory, log, session_factory, bottles):
        with session_scope(session_factory) as session:
            session.get(Batch, bottles.id).quantity = 5
        report = log.reconcile(bottles.id)
        assert not report.is_consistent
        assert any(m.startswith("quantity") for m in report.mismatches)

    def test_detects_status_drift(self, inventory, log, session_factory, bottles):
        with session_scope(session_factory) as session:
            session.get(Batch, bottles.id).status = BatchStatus.DEPLETED
        report = log.reconcile(bottles.id)
        assert report.derived_status == BatchStatus.AVAILABLE
        assert any(m.startswith("status") for m in report.mismatches)

    def test_pending_expiry_is_not_drift(self, inventory, log, medium, clock):
        batch = inventory.batches.receive(
            medium.id,
            "SOON",
            1,
            volume_per_unit="10",
            expiration_date=clock.today + timedelta(days=1),
        )
        clock.advance(5)
        report = log.reconcile(batch.id)
        assert report.derived_status == BatchStatus.EXPIRED
        assert report.is_consistent


def test_conservation_over_many_operations(inventory, log, medium):
    batch = inventory.batches.receive(
        medium.id, "BIG", 10, volume_per_unit="250", current_unit_volume="80"
    )
    for amount in ["30", "50", "200.5", "0.001", "499.499"]:
        inventory.batches.apply_consumption(batch.id, amount)
    inventory.batches.apply_adjustment(batch.id, "120", "recount")

    live = inventory.batches.get(batch.id)
    total = sum((m.amount for m in log.history(batch.id)), D("0"))
    content = live.current_unit_volume + (live.quantity - 1) * live.volume_per_unit
    assert total == content
    assert sum(m.quantity_delta for m in log.history(batch.id)) == live.quantity
    assert log.reconcile(batch.id).is_consistent
