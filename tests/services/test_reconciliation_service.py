"""
Tests for ReconciliationService.

Covers:
- Go-live filtering: documents before go-live are never persisted
- Documents created by this application (matched by doc entry or doc
  number) are known; documents touching no tracked product are irrelevant
- Re-running over the same window inserts nothing new
- Run outcomes: SUCCEEDED, PARTIAL, FAILED, NOT_CONFIGURED
- One running reconciliation per tenant; stale runs are failed
- Operator review of external documents
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from inventory_erp.documents import parse_document
from inventory_kernel.domain.dtos import TransferItemInput
from inventory_kernel.domain.types import (
    DateSource,
    ErpDocType,
    ExternalDocumentStatus,
    GoLiveSource,
    RunPhase,
    RunStatus,
    RunType,
)
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    ExternalSystemError,
    ReconciliationInProgressError,
    ValidationError,
)
from inventory_kernel.models.master_data import ProductModel
from inventory_kernel.models.reconciliation_run import ReconciliationRunModel
from inventory_kernel.services.consignment_service import ConsignmentService
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sync_service import SyncService

GO_LIVE = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def service(fake_erp) -> ReconciliationService:
    return ReconciliationService(fake_erp)


@pytest.fixture
def go_live(service, tenant_ctx, test_actor_id):
    return service.set_go_live_date(tenant_ctx, GO_LIVE, test_actor_id)


def _delivery_notes_only():
    return [ErpDocType.DELIVERY_NOTE]


class TestGoLiveFiltering:
    def test_only_documents_after_go_live_are_found(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        fake_erp.add(
            make_erp_document(101, doc_date=datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)),
            make_erp_document(100, doc_date=datetime(2025, 12, 31, 9, 0, tzinfo=timezone.utc)),
        )

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.SUCCEEDED
        assert run.external_docs_found == 1
        assert run.external_docs_new == 1
        assert run.window_from == GO_LIVE
        assert run.date_source == DateSource.GO_LIVE_DATE
        (doc,) = service.list_external_documents(tenant_ctx)
        assert doc.erp_doc_entry == 101
        assert doc.status == ExternalDocumentStatus.PENDING_REVIEW
        assert doc.items[0]["item_code"] == "GW-001"
        assert doc.items[0]["batches"][0]["batch_number"] == "LOT-A"

    def test_document_entered_later_on_go_live_day_is_found(
        self, service, tenant_ctx, fake_erp, test_actor_id
    ):
        # Initial sync at noon; the ERP stamps the document with the bare day.
        service.set_go_live_date(
            tenant_ctx, datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc), test_actor_id
        )
        fake_erp.add(
            parse_document(
                ErpDocType.DELIVERY_NOTE,
                {
                    "DocEntry": 200,
                    "DocNum": 300,
                    "DocDate": "2026-01-05T00:00:00Z",
                    "CardCode": "C-NORTE",
                    "DocumentLines": [
                        {
                            "ItemCode": "GW-001",
                            "Quantity": 2,
                            "WarehouseCode": "CN01",
                            "BatchNumbers": [{"BatchNumber": "LOT-A", "Quantity": 2}],
                        }
                    ],
                },
            )
        )

        run = service.run(tenant_ctx, document_types=_delivery_notes_only())

        assert run.external_docs_found == 1
        assert run.stats[ErpDocType.DELIVERY_NOTE.value]["pre_existing"] == 0
        (doc,) = service.list_external_documents(tenant_ctx)
        assert doc.erp_doc_entry == 200

    def test_without_go_live_run_is_not_configured(self, service, tenant_ctx, fake_erp):
        run = service.run(tenant_ctx)

        assert run.status == RunStatus.NOT_CONFIGURED
        assert run.date_source == DateSource.NONE
        assert run.errors[0]["phase"] == RunPhase.SETUP.value
        assert fake_erp.fetch_calls == []

    def test_custom_range_is_clamped_to_go_live(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        fake_erp.add(
            make_erp_document(301, doc_date=datetime(2026, 1, 3, tzinfo=timezone.utc)),
            make_erp_document(302, doc_date=datetime(2026, 1, 10, tzinfo=timezone.utc)),
        )

        run = service.run(
            tenant_ctx,
            from_date=date(2025, 6, 1),
            to_date=date(2026, 1, 5),
            document_types=_delivery_notes_only(),
        )

        assert run.date_source == DateSource.CUSTOM_RANGE
        assert run.window_from == GO_LIVE
        assert run.window_to.date() == date(2026, 1, 5)
        assert [d.erp_doc_entry for d in service.list_external_documents(tenant_ctx)] == [301]


class TestClassification:
    def test_documents_pushed_by_the_application_are_known(
        self, service, tenant_ctx, fake_erp, make_erp_document, master_data, receive_stock, go_live
    ):
        lot = receive_stock().lot
        with tenant_ctx.session_scope() as session:
            consignment = ConsignmentService(session, tenant_ctx.clock).create_consignment(
                master_data.warehouse_id,
                master_data.centro_id,
                [TransferItemInput(master_data.guidewire_id, lot.id, 2)],
                master_data.actor_id,
            )
        pushed = SyncService(fake_erp).push(tenant_ctx, consignment.sync.id)
        fake_erp.add(
            # Same doc entry as the pushed transfer
            make_erp_document(pushed.erp_doc_entry, doc_type=ErpDocType.STOCK_TRANSFER),
            # Different entry, same doc number
            make_erp_document(
                9999, doc_type=ErpDocType.STOCK_TRANSFER, doc_num=pushed.erp_doc_num
            ),
            make_erp_document(4242, doc_type=ErpDocType.STOCK_TRANSFER),
        )

        run = service.run(tenant_ctx, document_types=[ErpDocType.STOCK_TRANSFER])

        stats = run.stats[ErpDocType.STOCK_TRANSFER.value]
        assert stats["known"] == 2
        assert stats["external"] == 1
        assert [d.erp_doc_entry for d in service.list_external_documents(tenant_ctx)] == [4242]

    def test_untracked_items_are_irrelevant(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        fake_erp.add(
            make_erp_document(501, item_codes=("OTHER-1",)),
            make_erp_document(502, item_codes=("OTHER-1", "ST-002")),
        )

        run = service.run(tenant_ctx, document_types=_delivery_notes_only())

        stats = run.stats[ErpDocType.DELIVERY_NOTE.value]
        assert stats["irrelevant"] == 1
        assert stats["external"] == 1
        (doc,) = service.list_external_documents(tenant_ctx)
        assert [item["item_code"] for item in doc.items] == ["ST-002"]

    def test_no_tracked_products_skips_the_erp(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        with tenant_ctx.session_scope() as session:
            session.execute(update(ProductModel).values(is_active=False))
        fake_erp.add(make_erp_document(601))

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.SUCCEEDED
        assert run.documents_checked == 0
        assert fake_erp.fetch_calls == []


class TestIdempotence:
    def test_rerun_inserts_nothing_new(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live, deterministic_clock
    ):
        fake_erp.add(make_erp_document(701), make_erp_document(702))

        first = service.run(tenant_ctx)
        deterministic_clock.advance(3600)
        second = service.run(tenant_ctx)

        assert (first.external_docs_found, first.external_docs_new) == (2, 2)
        assert (second.external_docs_found, second.external_docs_new) == (2, 0)
        assert len(service.list_external_documents(tenant_ctx)) == 2

    def test_rerun_keeps_operator_status(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live, test_actor_id,
        deterministic_clock,
    ):
        fake_erp.add(make_erp_document(801))
        service.run(tenant_ctx)
        (doc,) = service.list_external_documents(tenant_ctx)
        service.update_external_document_status(
            tenant_ctx, doc.id, ExternalDocumentStatus.IGNORED, test_actor_id
        )

        deterministic_clock.advance(3600)
        service.run(tenant_ctx, run_type=RunType.NIGHTLY)

        (doc,) = service.list_external_documents(tenant_ctx)
        assert doc.status == ExternalDocumentStatus.IGNORED

    def test_duplicate_rows_in_one_fetch_count_once(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        document = make_erp_document(901)
        fake_erp.add(document, document)

        run = service.run(tenant_ctx, document_types=_delivery_notes_only())

        assert run.external_docs_found == 1
        assert run.documents_checked == 1


class TestRunOutcomes:
    def test_one_failing_type_makes_run_partial(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        fake_erp.add(make_erp_document(1001))
        fake_erp.fetch_errors[ErpDocType.STOCK_TRANSFER] = ExternalSystemError(
            "List StockTransfers failed: timeout", retryable=True
        )

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.PARTIAL
        assert run.external_docs_found == 1
        (error,) = run.errors
        assert error["phase"] == ErpDocType.STOCK_TRANSFER.value
        assert "timeout" in error["message"]

    def test_every_type_failing_makes_run_failed(self, service, tenant_ctx, fake_erp, go_live):
        for doc_type in ErpDocType:
            fake_erp.fetch_errors[doc_type] = ExternalSystemError("boom")

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.FAILED
        assert len(run.errors) == 3

    def test_connection_failure_stops_before_fetching(
        self, service, tenant_ctx, fake_erp, go_live
    ):
        fake_erp.connection_error = ExternalSystemError(
            "ERP login failed: bad password", retryable=False, status_code=401
        )

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.FAILED
        assert run.errors[0]["phase"] == RunPhase.CONNECTION.value
        assert run.errors[0]["details"]["status_code"] == 401
        assert fake_erp.fetch_calls == []

    def test_missing_erp_client_is_a_connection_failure(self, tenant_ctx, go_live):
        run = ReconciliationService(None).run(tenant_ctx)

        assert run.status == RunStatus.FAILED
        assert run.errors[0]["phase"] == RunPhase.CONNECTION.value

    def test_status_reports_last_run_and_pending_review(
        self, service, tenant_ctx, fake_erp, make_erp_document, go_live
    ):
        fake_erp.add(make_erp_document(1101))
        run = service.run(tenant_ctx)

        status = service.get_status(tenant_ctx)

        assert status.last_run.id == run.id
        assert status.in_progress is False
        assert status.pending_review == 1
        assert status.go_live_date == GO_LIVE
        assert [r.id for r in service.get_history(tenant_ctx)] == [run.id]


class TestRunMutex:
    def _started_run(self, tenant_ctx, started_at):
        with tenant_ctx.session_scope() as session:
            run = ReconciliationRunModel(
                tenant_id=tenant_ctx.tenant_id,
                run_type=RunType.NIGHTLY.value,
                status=RunStatus.STARTED.value,
                started_at=started_at,
                date_source=DateSource.GO_LIVE_DATE.value,
            )
            session.add(run)
            session.flush()
            return run.id

    def test_fresh_started_run_blocks_a_new_one(self, service, tenant_ctx, go_live):
        running_id = self._started_run(
            tenant_ctx, tenant_ctx.clock.now() - timedelta(minutes=10)
        )

        with pytest.raises(ReconciliationInProgressError) as exc_info:
            service.run(tenant_ctx)

        assert exc_info.value.run_id == str(running_id)
        assert service.get_status(tenant_ctx).in_progress is True

    def test_stale_started_run_is_failed(self, service, tenant_ctx, go_live):
        stale_id = self._started_run(
            tenant_ctx, tenant_ctx.clock.now() - timedelta(minutes=61)
        )

        run = service.run(tenant_ctx)

        assert run.status == RunStatus.SUCCEEDED
        history = {r.id: r for r in service.get_history(tenant_ctx)}
        stale = history[stale_id]
        assert stale.status == RunStatus.FAILED
        assert stale.errors[-1]["phase"] == RunPhase.SYSTEM.value
        assert stale.completed_at is not None


class TestOperatorReview:
    @pytest.fixture
    def external_doc(self, service, tenant_ctx, fake_erp, make_erp_document, go_live):
        fake_erp.add(make_erp_document(1201))
        service.run(tenant_ctx, document_types=_delivery_notes_only())
        (doc,) = service.list_external_documents(tenant_ctx)
        return doc

    def test_acknowledge_records_reviewer(
        self, service, tenant_ctx, external_doc, test_actor_id, deterministic_clock
    ):
        doc = service.update_external_document_status(
            tenant_ctx,
            external_doc.id,
            ExternalDocumentStatus.ACKNOWLEDGED,
            test_actor_id,
            notes="entered by accounting",
        )

        assert doc.status == ExternalDocumentStatus.ACKNOWLEDGED
        assert doc.reviewed_by_id == test_actor_id
        assert doc.reviewed_at == deterministic_clock.now()
        assert doc.notes == "entered by accounting"
        assert service.get_status(tenant_ctx).pending_review == 0

    def test_status_filter(self, service, tenant_ctx, external_doc, test_actor_id):
        service.update_external_document_status(
            tenant_ctx, external_doc.id, ExternalDocumentStatus.IGNORED, test_actor_id
        )

        assert service.list_external_documents(
            tenant_ctx, status=ExternalDocumentStatus.PENDING_REVIEW
        ) == []
        assert len(
            service.list_external_documents(tenant_ctx, status=ExternalDocumentStatus.IGNORED)
        ) == 1

    def test_pending_review_cannot_be_set_by_operator(
        self, service, tenant_ctx, external_doc, test_actor_id
    ):
        with pytest.raises(ValidationError):
            service.update_external_document_status(
                tenant_ctx, external_doc.id, ExternalDocumentStatus.PENDING_REVIEW, test_actor_id
            )

    def test_unknown_status_string_rejected(self, service, tenant_ctx, external_doc, test_actor_id):
        with pytest.raises(ValidationError):
            service.update_external_document_status(
                tenant_ctx, external_doc.id, "ARCHIVED", test_actor_id
            )

    def test_unknown_document(self, service, tenant_ctx, test_actor_id):
        with pytest.raises(DocumentNotFoundError):
            service.update_external_document_status(
                tenant_ctx, uuid4(), ExternalDocumentStatus.ACKNOWLEDGED, test_actor_id
            )


class TestGoLiveConfig:
    def test_set_and_read_back(self, service, tenant_ctx, test_actor_id, deterministic_clock):
        config = service.set_go_live_date(
            tenant_ctx, date(2026, 1, 1), test_actor_id, GoLiveSource.SYNC_SCRIPT
        )

        assert config.go_live_date == GO_LIVE
        assert config.go_live_set_by == GoLiveSource.SYNC_SCRIPT
        assert config.go_live_set_at == deterministic_clock.now()
        assert service.get_config(tenant_ctx).go_live_date == GO_LIVE

    def test_naive_datetime_rejected(self, service, tenant_ctx, test_actor_id):
        with pytest.raises(ValidationError):
            service.set_go_live_date(tenant_ctx, datetime(2026, 1, 1), test_actor_id)
