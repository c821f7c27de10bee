"""
Tests for InventoryOperations, the per-tenant facade.

Covers end-to-end calls through committed session scopes, the optimistic
lock retry loop, and the ERP-less configuration error.
"""

from datetime import date, datetime, timezone

import pytest

from inventory_kernel.domain.dtos import TransferItemInput
from inventory_kernel.domain.types import ConsignmentStatus, LotStatus, RunStatus, SyncStatus
from inventory_kernel.exceptions import (
    ConfigurationError,
    InsufficientStockError,
    OptimisticLockError,
)
from inventory_services import operations as operations_module
from inventory_services.operations import LEDGER_ATTEMPTS, InventoryOperations


@pytest.fixture
def ops(tenant_ctx, fake_erp) -> InventoryOperations:
    return InventoryOperations(tenant_ctx, fake_erp)


class TestLedgerCalls:
    def test_receive_transfer_consume(self, ops, master_data):
        received = ops.receive(
            master_data.guidewire_id,
            master_data.warehouse_id,
            "LOT-OPS",
            20,
            date(2027, 6, 30),
            master_data.actor_id,
        )
        moved = ops.transfer(
            master_data.guidewire_id,
            received.lot.id,
            master_data.warehouse_id,
            master_data.centro_id,
            8,
            master_data.actor_id,
        )
        used = ops.consume(
            master_data.guidewire_id,
            moved.destination_lot.id,
            master_data.centro_id,
            8,
            master_data.actor_id,
        )

        assert used.lot.status == LotStatus.DEPLETED
        centro = ops.recompute(master_data.guidewire_id, master_data.centro_id)
        assert centro.quantity_consumed == 8
        assert centro.quantity_available == 0
        warehouse = ops.recompute(master_data.guidewire_id, master_data.warehouse_id)
        assert warehouse.quantity_available == 12
        assert warehouse.quantity_consigned == 8

    def test_domain_errors_propagate_unchanged(self, ops, master_data, receive_stock):
        lot = receive_stock(quantity=3).lot
        with pytest.raises(InsufficientStockError):
            ops.consume(
                master_data.guidewire_id,
                lot.id,
                master_data.warehouse_id,
                4,
                master_data.actor_id,
            )


class TestOptimisticRetry:
    def test_retried_until_success(self, ops, test_actor_id, captured_logs):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < LEDGER_ATTEMPTS:
                raise OptimisticLockError("Lot", "L1")
            return "done"

        assert ops._retrying(test_actor_id, "flaky", flaky) == "done"
        assert len(calls) == LEDGER_ATTEMPTS
        retried = [r for r in captured_logs() if r["message"] == "ledger_call_retried"]
        assert len(retried) == LEDGER_ATTEMPTS - 1

    def test_gives_up_after_attempts(self, ops, test_actor_id, captured_logs):
        calls = []

        def always_conflicts():
            calls.append(1)
            raise OptimisticLockError("Lot", "L1")

        with pytest.raises(OptimisticLockError):
            ops._retrying(test_actor_id, "conflict", always_conflicts)

        assert len(calls) == LEDGER_ATTEMPTS
        exhausted = [
            r for r in captured_logs() if r["message"] == "ledger_call_conflict_exhausted"
        ]
        assert exhausted[0]["operation"] == "conflict"
        assert exhausted[0]["tenant_id"] == "tenant-a"

    def test_attempt_count_is_module_setting(self, ops, test_actor_id, monkeypatch):
        monkeypatch.setattr(operations_module, "LEDGER_ATTEMPTS", 1)
        calls = []

        def conflict():
            calls.append(1)
            raise OptimisticLockError("Lot", "L1")

        with pytest.raises(OptimisticLockError):
            ops._retrying(test_actor_id, "conflict", conflict)
        assert len(calls) == 1


class TestDocumentsAndSync:
    def test_consignment_push_and_confirm(self, ops, fake_erp, master_data, receive_stock):
        lot = receive_stock(quantity=5).lot
        consignment = ops.create_consignment(
            master_data.warehouse_id,
            master_data.centro_id,
            [TransferItemInput(master_data.guidewire_id, lot.id, 5)],
            master_data.actor_id,
        )

        synced = ops.push_sync(consignment.sync.id)
        confirmed = ops.confirm_consignment(consignment.id, None, master_data.actor_id)

        assert synced.status == SyncStatus.SYNCED
        assert len(fake_erp.created) == 1
        assert confirmed.status == ConsignmentStatus.RECIBIDO
        assert confirmed.items[0].discrepancy == 0

    def test_sync_requires_erp_client(self, tenant_ctx, master_data, receive_stock):
        ops = InventoryOperations(tenant_ctx)
        lot = receive_stock(quantity=5).lot
        consignment = ops.create_consignment(
            master_data.warehouse_id,
            master_data.centro_id,
            [TransferItemInput(master_data.guidewire_id, lot.id, 1)],
            master_data.actor_id,
        )
        with pytest.raises(ConfigurationError):
            ops.push_sync(consignment.sync.id)
        with pytest.raises(ConfigurationError):
            ops.retry_failed_syncs()


class TestReconciliationFacade:
    def test_manual_run_after_go_live(self, ops, fake_erp, make_erp_document, test_actor_id):
        ops.set_go_live_date(datetime(2026, 1, 1, tzinfo=timezone.utc), test_actor_id)
        fake_erp.add(make_erp_document(31))

        run = ops.trigger_reconciliation(test_actor_id)

        assert run.status == RunStatus.SUCCEEDED
        assert [d.erp_doc_entry for d in ops.list_external_documents()] == [31]
        assert ops.get_reconciliation_status().last_run.id == run.id
        assert ops.get_config().go_live_date == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_run_without_go_live(self, ops, test_actor_id):
        run = ops.trigger_reconciliation(test_actor_id)
        assert run.status == RunStatus.NOT_CONFIGURED
        assert ops.get_reconciliation_history()[0].id == run.id
