"""
Tests for InventoryAggregator and the drift check.

The Inventory row for a (product, location) pair is a projection of its
lots.  These tests corrupt the stored projection and verify that a
recompute restores it, and that a recompute of an intact row changes
nothing.
"""

from datetime import date

from sqlalchemy import select

from inventory_kernel.models.inventory import InventoryModel
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.inventory_aggregator import InventoryAggregator


def _walkthrough(ledger, master_data):
    received = ledger.receive(
        master_data.guidewire_id, master_data.warehouse_id, "L1", 100,
        date(2027, 1, 1), master_data.actor_id,
    )
    ledger.receive(
        master_data.guidewire_id, master_data.warehouse_id, "L2", 7,
        date(2027, 2, 1), master_data.actor_id,
    )
    moved = ledger.transfer(
        master_data.guidewire_id, received.lot.id, master_data.warehouse_id,
        master_data.centro_id, 40, master_data.actor_id,
    )
    ledger.consume(
        master_data.guidewire_id, moved.destination_lot.id, master_data.centro_id,
        15, master_data.actor_id,
    )


class TestRecompute:
    def test_ledger_leaves_no_drift(self, session, ledger, master_data):
        _walkthrough(ledger, master_data)

        assert InventorySelector(session).aggregate_drift() == []

    def test_warehouse_row_sums_every_lot(self, session, ledger, master_data):
        _walkthrough(ledger, master_data)

        row = InventorySelector(session).get_inventory(
            master_data.guidewire_id, master_data.warehouse_id
        )
        assert row.quantity_total == 107
        assert row.quantity_available == 67
        assert row.quantity_consigned == 40
        assert row.quantity_consumed == 0

    def test_recompute_is_idempotent(self, session, ledger, master_data, deterministic_clock):
        _walkthrough(ledger, master_data)
        aggregator = InventoryAggregator(session, deterministic_clock)

        first = aggregator.recompute(master_data.guidewire_id, master_data.centro_id)
        second = aggregator.recompute(master_data.guidewire_id, master_data.centro_id)

        assert first == second
        assert (first.quantity_total, first.quantity_available, first.quantity_consumed) == (
            40, 25, 15,
        )

    def test_recompute_repairs_corrupted_row(self, session, ledger, master_data, deterministic_clock):
        _walkthrough(ledger, master_data)
        row = session.execute(
            select(InventoryModel).where(
                InventoryModel.product_id == master_data.guidewire_id,
                InventoryModel.location_id == master_data.centro_id,
            )
        ).scalar_one()
        row.quantity_available = 999
        session.flush()

        selector = InventorySelector(session)
        (drift,) = selector.aggregate_drift()
        assert drift["location_id"] == master_data.centro_id
        assert drift["expected"]["quantity_available"] == 25
        assert drift["stored"]["quantity_available"] == 999

        InventoryAggregator(session, deterministic_clock).recompute(
            master_data.guidewire_id, master_data.centro_id
        )
        assert selector.aggregate_drift() == []

    def test_recompute_all_creates_missing_rows(self, session, ledger, master_data, deterministic_clock):
        _walkthrough(ledger, master_data)
        for row in session.execute(select(InventoryModel)).scalars():
            session.delete(row)
        session.flush()
        assert len(InventorySelector(session).aggregate_drift()) == 2

        results = InventoryAggregator(session, deterministic_clock).recompute_all()

        assert len(results) == 2
        assert InventorySelector(session).aggregate_drift() == []

    def test_pair_without_lots_is_all_zero(self, session, master_data, deterministic_clock):
        snapshot = InventoryAggregator(session, deterministic_clock).recompute(
            master_data.stent_id, master_data.centro_sur_id
        )
        assert snapshot.quantity_total == 0
        assert snapshot.quantity_available == 0
        assert snapshot.last_movement_at == deterministic_clock.now()
