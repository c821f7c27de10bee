"""
inventory_services.operations -- caller-facing operations for one tenant.

Responsibility:
    The seam an HTTP layer or a script calls.  Each method opens its own
    session scope on the tenant store, binds ``tenant_id`` / ``actor_id``
    into the log context and returns frozen dataclasses.  Ledger calls are
    re-run from scratch when a concurrent writer wins an optimistic lock.

Architecture position:
    Services -- the outermost layer of this package.  Composes the kernel
    services (LotLedger, ConsignmentService, DocumentService,
    InventoryAggregator), ReconciliationService, ExternalImportService and
    SyncService.

Failure modes:
    Every typed InventoryError propagates unchanged.  ConcurrencyError is
    raised only after ``LEDGER_ATTEMPTS`` attempts have all lost.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Mapping, Sequence, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_config.schema import ReconciliationSettings
from inventory_erp.client import ErpClient
from inventory_kernel.db.tenancy import TenantContext
from inventory_kernel.domain.dtos import (
    ConsignmentSnapshot,
    ConsumptionItemInput,
    ConsumptionSnapshot,
    ExternalDocumentSnapshot,
    GoodsReceiptSnapshot,
    InventorySnapshot,
    MovementResult,
    ReceiptItemInput,
    ReconciliationRunSnapshot,
    ReconciliationStatus,
    RetrySweepResult,
    SyncTrackerSnapshot,
    TenantConfigSnapshot,
    TransferItemInput,
)
from inventory_kernel.domain.types import (
    DocumentOrigin,
    ErpDocType,
    ExternalDocumentStatus,
    GoLiveSource,
    RunType,
)
from inventory_kernel.exceptions import ConcurrencyError, ConfigurationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.consignment_service import ConsignmentService
from inventory_kernel.services.document_service import DocumentService
from inventory_kernel.services.inventory_aggregator import InventoryAggregator
from inventory_kernel.services.lot_ledger import LotLedger
from inventory_services.import_service import ExternalImportService, ImportResult
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sync_service import SyncService

logger = get_logger("services.operations")

LEDGER_ATTEMPTS = 3

T = TypeVar("T")


class InventoryOperations:
    """
    Contract:
        Bound to one TenantContext.  ``erp_client`` is optional; methods
        that need the ERP raise ConfigurationError without it (a
        reconciliation run records a CONNECTION failure instead).
    """

    def __init__(
        self,
        tenant_ctx: TenantContext,
        erp_client: ErpClient | None = None,
        settings: ReconciliationSettings | None = None,
    ):
        self.ctx = tenant_ctx
        self.erp = erp_client
        self.settings = settings or ReconciliationSettings()
        self.reconciliation = ReconciliationService(erp_client, self.settings)
        self.importer = ExternalImportService()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _bind(self, actor_id: UUID | None = None):
        return LogContext.bind(tenant_id=self.ctx.tenant_id, actor_id=actor_id)

    def _retrying(self, actor_id: UUID, operation: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` again when it loses an optimistic lock, up to LEDGER_ATTEMPTS times."""
        with self._bind(actor_id):
            attempt = 1
            while True:
                try:
                    return fn()
                except ConcurrencyError:
                    if attempt >= LEDGER_ATTEMPTS:
                        logger.error(
                            "ledger_call_conflict_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "ledger_call_retried",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    attempt += 1

    def _ledger_call(self, actor_id: UUID, operation: str, fn: Callable[[Session], T]) -> T:
        def run() -> T:
            with self.ctx.session_scope() as session:
                return fn(session)

        return self._retrying(actor_id, operation, run)

    def _sync(self) -> SyncService:
        if self.erp is None:
            raise ConfigurationError(
                "No ERP client configured for this tenant", tenant_id=self.ctx.tenant_id
            )
        return SyncService(
            self.erp, self.settings.max_sync_retries, self.settings.retry_lease_seconds
        )

    # ------------------------------------------------------------------
    # Ledger primitives
    # ------------------------------------------------------------------

    def receive(
        self,
        product_id: UUID,
        location_id: UUID,
        lot_number: str,
        quantity: int,
        expiry_date: date,
        actor_id: UUID,
        supplier: str | None = None,
        unit_cost: Decimal | None = None,
    ) -> MovementResult:
        return self._ledger_call(
            actor_id,
            "receive",
            lambda session: LotLedger(session, self.ctx.clock).receive(
                product_id=product_id,
                location_id=location_id,
                lot_number=lot_number,
                quantity=quantity,
                expiry_date=expiry_date,
                actor_id=actor_id,
                supplier=supplier,
                unit_cost=unit_cost,
            ),
        )

    def transfer(
        self,
        product_id: UUID,
        source_lot_id: UUID,
        from_location_id: UUID,
        to_location_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> MovementResult:
        return self._ledger_call(
            actor_id,
            "transfer",
            lambda session: LotLedger(session, self.ctx.clock).transfer(
                product_id=product_id,
                source_lot_id=source_lot_id,
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                quantity=quantity,
                actor_id=actor_id,
            ),
        )

    def consume(
        self,
        product_id: UUID,
        lot_id: UUID,
        location_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> MovementResult:
        return self._ledger_call(
            actor_id,
            "consume",
            lambda session: LotLedger(session, self.ctx.clock).consume(
                product_id=product_id,
                lot_id=lot_id,
                location_id=location_id,
                quantity=quantity,
                actor_id=actor_id,
            ),
        )

    def recompute(self, product_id: UUID, location_id: UUID) -> InventorySnapshot:
        with self._bind():
            with self.ctx.session_scope() as session:
                return InventoryAggregator(session, self.ctx.clock).recompute(
                    product_id, location_id
                )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_consignment(
        self,
        from_location_id: UUID,
        to_location_id: UUID,
        items: Sequence[TransferItemInput],
        actor_id: UUID,
        notes: str | None = None,
    ) -> ConsignmentSnapshot:
        return self._ledger_call(
            actor_id,
            "create_consignment",
            lambda session: ConsignmentService(session, self.ctx.clock).create_consignment(
                from_location_id, to_location_id, items, actor_id, notes
            ),
        )

    def confirm_consignment(
        self,
        consignment_id: UUID,
        received: Mapping[UUID, int] | None,
        actor_id: UUID,
        notes: str | None = None,
    ) -> ConsignmentSnapshot:
        return self._ledger_call(
            actor_id,
            "confirm_consignment",
            lambda session: ConsignmentService(session, self.ctx.clock).confirm_consignment(
                consignment_id, received, actor_id, notes
            ),
        )

    def receive_goods(
        self,
        location_id: UUID,
        items: Sequence[ReceiptItemInput],
        actor_id: UUID,
        supplier: str | None = None,
        supplier_code: str | None = None,
        notes: str | None = None,
    ) -> GoodsReceiptSnapshot:
        return self._ledger_call(
            actor_id,
            "receive_goods",
            lambda session: DocumentService(session, self.ctx.clock).receive_goods(
                location_id,
                items,
                actor_id,
                supplier=supplier,
                supplier_code=supplier_code,
                notes=notes,
                origin=DocumentOrigin.APP,
            ),
        )

    def record_consumption(
        self,
        location_id: UUID,
        items: Sequence[ConsumptionItemInput],
        actor_id: UUID,
        patient_name: str | None = None,
        doctor_name: str | None = None,
        procedure: str | None = None,
        procedure_date: date | None = None,
        notes: str | None = None,
    ) -> ConsumptionSnapshot:
        return self._ledger_call(
            actor_id,
            "record_consumption",
            lambda session: DocumentService(session, self.ctx.clock).record_consumption(
                location_id,
                items,
                actor_id,
                patient_name=patient_name,
                doctor_name=doctor_name,
                procedure=procedure,
                procedure_date=procedure_date,
                notes=notes,
            ),
        )

    # ------------------------------------------------------------------
    # ERP sync
    # ------------------------------------------------------------------

    def push_sync(self, tracker_id: UUID) -> SyncTrackerSnapshot:
        with self._bind():
            return self._sync().push(self.ctx, tracker_id)

    def retry_failed_syncs(self, limit: int | None = None) -> RetrySweepResult:
        with self._bind():
            return self._sync().retry_failed(
                self.ctx, limit=limit or self.settings.retry_batch_size
            )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def trigger_reconciliation(
        self,
        actor_id: UUID | None = None,
        from_date: date | datetime | None = None,
        to_date: date | datetime | None = None,
        document_types: Sequence[ErpDocType] | None = None,
    ) -> ReconciliationRunSnapshot:
        with self._bind(actor_id):
            return self.reconciliation.run(
                self.ctx,
                RunType.MANUAL,
                triggered_by_id=actor_id,
                from_date=from_date,
                to_date=to_date,
                document_types=document_types,
            )

    def get_reconciliation_status(self) -> ReconciliationStatus:
        with self._bind():
            return self.reconciliation.get_status(self.ctx)

    def get_reconciliation_history(
        self, limit: int = 20, offset: int = 0
    ) -> list[ReconciliationRunSnapshot]:
        with self._bind():
            return self.reconciliation.get_history(self.ctx, limit, offset)

    def list_external_documents(
        self,
        status: ExternalDocumentStatus | None = None,
        doc_type: ErpDocType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExternalDocumentSnapshot]:
        with self._bind():
            return self.reconciliation.list_external_documents(
                self.ctx, status, doc_type, limit, offset
            )

    def update_external_document_status(
        self,
        document_id: UUID,
        status: ExternalDocumentStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> ExternalDocumentSnapshot:
        with self._bind(actor_id):
            return self.reconciliation.update_external_document_status(
                self.ctx, document_id, status, actor_id, notes
            )

    def import_external_document(self, document_id: UUID, actor_id: UUID) -> ImportResult:
        return self._retrying(
            actor_id,
            "import_external_document",
            lambda: self.importer.import_document(self.ctx, document_id, actor_id),
        )

    def get_config(self) -> TenantConfigSnapshot:
        with self._bind():
            return self.reconciliation.get_config(self.ctx)

    def set_go_live_date(
        self,
        go_live_date: date | datetime,
        actor_id: UUID | None,
        source: GoLiveSource = GoLiveSource.MANUAL,
    ) -> TenantConfigSnapshot:
        with self._bind(actor_id):
            return self.reconciliation.set_go_live_date(
                self.ctx, go_live_date, actor_id, source
            )
