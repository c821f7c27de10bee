"""
Tests for ExternalImportService.

An external delivery note becomes a local consumption and an external
purchase delivery note becomes a goods receipt.  The imported document's
tracker carries the ERP identifiers, so the next reconciliation run sees
the ERP document as known.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from inventory_kernel.domain.dtos import TransferItemInput
from inventory_kernel.domain.types import (
    DocumentOrigin,
    ErpDocType,
    ExternalDocumentStatus,
    SyncStatus,
)
from inventory_kernel.exceptions import LotNotFoundError, ValidationError
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.consignment_service import ConsignmentService
from inventory_services.import_service import ExternalImportService
from inventory_services.reconciliation_service import ReconciliationService


@pytest.fixture
def reconciliation(fake_erp, tenant_ctx, test_actor_id) -> ReconciliationService:
    service = ReconciliationService(fake_erp)
    service.set_go_live_date(tenant_ctx, datetime(2026, 1, 1, tzinfo=timezone.utc), test_actor_id)
    return service


@pytest.fixture
def importer() -> ExternalImportService:
    return ExternalImportService()


@pytest.fixture
def detect(reconciliation, tenant_ctx, fake_erp, deterministic_clock):
    """Put documents in the ERP, run reconciliation, return the external document ids."""

    def _detect(*documents):
        fake_erp.add(*documents)
        deterministic_clock.advance(60)
        reconciliation.run(tenant_ctx)
        return {
            d.erp_doc_entry: d.id for d in reconciliation.list_external_documents(tenant_ctx)
        }

    return _detect


@pytest.fixture
def centro_stock(tenant_ctx, master_data, receive_stock):
    """LOT-A held at Centro Norte (6 units)."""
    lot = receive_stock().lot
    with tenant_ctx.session_scope() as session:
        consignment = ConsignmentService(session, tenant_ctx.clock).create_consignment(
            master_data.warehouse_id,
            master_data.centro_id,
            [TransferItemInput(master_data.guidewire_id, lot.id, 6)],
            master_data.actor_id,
        )
    return consignment.items[0].destination_lot_id


class TestImportDeliveryNote:
    def test_becomes_synced_consumption(
        self, importer, detect, tenant_ctx, make_erp_document, centro_stock, test_actor_id
    ):
        doc_id = detect(make_erp_document(1301, quantity=Decimal("2")))[1301]

        result = importer.import_document(tenant_ctx, doc_id, test_actor_id)

        assert result.external_document.status == ExternalDocumentStatus.IMPORTED
        assert result.external_document.reviewed_by_id == test_actor_id
        consumption = result.consumption
        assert consumption.origin == DocumentOrigin.EXTERNAL_IMPORT
        assert consumption.total_quantity == 2
        assert consumption.sync.status == SyncStatus.SYNCED
        assert (consumption.sync.erp_doc_entry, consumption.sync.erp_doc_num) == (1301, 1401)
        with tenant_ctx.session_scope() as session:
            lot = InventorySelector(session).get_lot(centro_stock)
        assert (lot.quantity_available, lot.quantity_consumed) == (4, 2)

    def test_imported_document_is_known_on_next_run(
        self, importer, detect, reconciliation, tenant_ctx, make_erp_document, centro_stock,
        test_actor_id, deterministic_clock,
    ):
        doc_id = detect(make_erp_document(1302))[1302]
        importer.import_document(tenant_ctx, doc_id, test_actor_id)

        deterministic_clock.advance(60)
        run = reconciliation.run(tenant_ctx, document_types=[ErpDocType.DELIVERY_NOTE])

        assert run.stats[ErpDocType.DELIVERY_NOTE.value]["known"] == 1
        assert run.external_docs_found == 0

    def test_second_import_rejected(
        self, importer, detect, tenant_ctx, make_erp_document, centro_stock, test_actor_id
    ):
        doc_id = detect(make_erp_document(1303))[1303]
        importer.import_document(tenant_ctx, doc_id, test_actor_id)

        with pytest.raises(ValidationError) as exc_info:
            importer.import_document(tenant_ctx, doc_id, test_actor_id)
        assert exc_info.value.field == "status"

    def test_unknown_batch_at_location(
        self, importer, detect, tenant_ctx, make_erp_document, centro_stock, test_actor_id,
        reconciliation,
    ):
        doc_id = detect(make_erp_document(1304, batch_number="LOT-Z"))[1304]

        with pytest.raises(LotNotFoundError):
            importer.import_document(tenant_ctx, doc_id, test_actor_id)

        (doc,) = reconciliation.list_external_documents(tenant_ctx)
        assert doc.status == ExternalDocumentStatus.PENDING_REVIEW

    def test_fractional_quantity_rejected(
        self, importer, detect, tenant_ctx, make_erp_document, centro_stock, test_actor_id
    ):
        doc_id = detect(make_erp_document(1305, quantity=Decimal("1.5")))[1305]

        with pytest.raises(ValidationError) as exc_info:
            importer.import_document(tenant_ctx, doc_id, test_actor_id)
        assert exc_info.value.field == "quantity"

    def test_lines_across_locations_rejected(
        self, importer, detect, tenant_ctx, make_erp_document, centro_stock, test_actor_id
    ):
        document = make_erp_document(1306, item_codes=("GW-001", "ST-002"))
        first, second = document.lines
        document = replace(document, lines=(first, replace(second, warehouse_code="CS01")))
        doc_id = detect(document)[1306]

        with pytest.raises(ValidationError) as exc_info:
            importer.import_document(tenant_ctx, doc_id, test_actor_id)
        assert exc_info.value.field == "warehouse_code"


class TestImportPurchaseDeliveryNote:
    def test_becomes_goods_receipt(
        self, importer, detect, tenant_ctx, make_erp_document, master_data, test_actor_id
    ):
        doc_id = detect(
            make_erp_document(
                1401,
                doc_type=ErpDocType.PURCHASE_DELIVERY_NOTE,
                batch_number="NEW-LOT",
                quantity=Decimal("5"),
                warehouse_code="01",
                card_code="V-ACME",
                expiry=date(2028, 1, 31),
            )
        )[1401]

        result = importer.import_document(tenant_ctx, doc_id, test_actor_id)

        receipt = result.goods_receipt
        assert receipt.location_id == master_data.warehouse_id
        assert receipt.total_quantity == 5
        assert receipt.sync.status == SyncStatus.SYNCED
        with tenant_ctx.session_scope() as session:
            lot = InventorySelector(session).find_lot(
                master_data.guidewire_id, "NEW-LOT", master_data.warehouse_id
            )
        assert lot.expiry_date == date(2028, 1, 31)
        assert lot.quantity_available == 5

    def test_batch_without_expiry_rejected(
        self, importer, detect, tenant_ctx, make_erp_document, test_actor_id
    ):
        doc_id = detect(
            make_erp_document(
                1402,
                doc_type=ErpDocType.PURCHASE_DELIVERY_NOTE,
                warehouse_code="01",
                expiry=None,
            )
        )[1402]

        with pytest.raises(ValidationError) as exc_info:
            importer.import_document(tenant_ctx, doc_id, test_actor_id)
        assert exc_info.value.field == "expiry_date"


def test_stock_transfers_cannot_be_imported(
    importer, detect, tenant_ctx, make_erp_document, test_actor_id
):
    doc_id = detect(make_erp_document(1501, doc_type=ErpDocType.STOCK_TRANSFER))[1501]

    with pytest.raises(ValidationError) as exc_info:
        importer.import_document(tenant_ctx, doc_id, test_actor_id)
    assert exc_info.value.field == "erp_doc_type"
