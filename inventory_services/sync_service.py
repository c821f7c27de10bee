"""
inventory_services.sync_service -- push local documents to the ERP and retry
failed pushes.

Responsibility:
    Builds the ERP request for the document that owns a sync tracker,
    calls the ERP and records the outcome on the tracker.  The retry sweep
    claims each retryable tracker under a lease before pushing it.

Architecture position:
    Services -- orchestration over SyncTrackerService and the ERP client.
    The ERP call always happens outside any open transaction: the claim is
    committed first, the outcome is recorded in a fresh scope afterwards.

Invariants enforced:
    - An ERP outcome never rolls back or alters the local document; it only
      moves the tracker.
    - A retry is pushed only by the worker holding the claim.
    - Documents that cannot be mapped to ERP codes (missing item code,
      warehouse or card code) are recorded as non-retryable failures
      without calling the ERP.

Failure modes:
    - SyncRetryNotAllowedError from ``push`` when the tracker is not PENDING.
    - ERP errors are recorded, not raised.
"""

from __future__ import annotations

from typing import Union
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_erp.client import ErpClient
from inventory_erp.payloads import (
    DeliveryNoteRequest,
    ErpLineRequest,
    PurchaseDeliveryNoteRequest,
    StockTransferRequest,
)
from inventory_kernel.db.tenancy import TenantContext
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import RetrySweepResult, SyncOutcome, SyncTrackerSnapshot
from inventory_kernel.domain.types import SyncOwnerKind, SyncStatus
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    ExternalSystemError,
    LocationNotFoundError,
    NotFoundError,
    ProductNotFoundError,
    SyncRetryNotAllowedError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.consignment import ConsignmentModel
from inventory_kernel.models.consumption import ConsumptionModel
from inventory_kernel.models.goods_receipt import GoodsReceiptModel
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.models.sync_tracker import SyncTrackerModel
from inventory_kernel.services.sync_tracker_service import (
    DEFAULT_LEASE_SECONDS,
    MAX_SYNC_RETRIES,
    RetryClaim,
    SyncTrackerService,
)

logger = get_logger("services.sync")

ErpRequest = Union[StockTransferRequest, DeliveryNoteRequest, PurchaseDeliveryNoteRequest]


class ErpRequestBuilder:
    """Reads the document owning a tracker and maps it to an ERP request."""

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock

    def build(self, tracker: SyncTrackerModel) -> ErpRequest:
        kind = SyncOwnerKind(tracker.owner_kind)
        if kind == SyncOwnerKind.CONSIGNMENT:
            return self._stock_transfer(tracker.owner_id)
        if kind == SyncOwnerKind.CONSUMPTION:
            return self._delivery_note(tracker.owner_id)
        return self._purchase_delivery_note(tracker.owner_id)

    def _location(self, location_id: UUID) -> LocationModel:
        location = self.session.get(LocationModel, location_id)
        if location is None:
            raise LocationNotFoundError(location_id)
        return location

    def _warehouse_code(self, location: LocationModel) -> str:
        if not location.erp_warehouse_code:
            raise ValidationError(
                f"Location {location.name} has no ERP warehouse code",
                field="erp_warehouse_code",
            )
        return location.erp_warehouse_code

    def _item_code(self, product_id: UUID) -> str:
        product = self.session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.erp_item_code:
            raise ValidationError(
                f"Product {product.code} has no ERP item code", field="erp_item_code"
            )
        return product.erp_item_code

    def _stock_transfer(self, consignment_id: UUID) -> StockTransferRequest:
        consignment = self.session.get(ConsignmentModel, consignment_id)
        if consignment is None:
            raise DocumentNotFoundError("Consignment", consignment_id)
        source = self._location(consignment.from_location_id)
        destination = self._location(consignment.to_location_id)
        return StockTransferRequest(
            from_warehouse=self._warehouse_code(source),
            to_warehouse=self._warehouse_code(destination),
            to_bin_abs_entry=destination.erp_bin_abs_entry,
            comments=f"Consignment {consignment.id}" + (
                f" - {consignment.notes}" if consignment.notes else ""
            ),
            lines=tuple(
                ErpLineRequest(
                    item_code=self._item_code(item.product_id),
                    quantity=item.quantity_sent,
                    batch_number=item.lot_number,
                )
                for item in consignment.items
            ),
        )

    def _delivery_note(self, consumption_id: UUID) -> DeliveryNoteRequest:
        consumption = self.session.get(ConsumptionModel, consumption_id)
        if consumption is None:
            raise DocumentNotFoundError("Consumption", consumption_id)
        location = self._location(consumption.location_id)
        if not location.erp_card_code:
            raise ValidationError(
                f"Location {location.name} has no ERP customer code", field="erp_card_code"
            )

        details = [
            f"Patient: {consumption.patient_name}" if consumption.patient_name else None,
            f"Doctor: {consumption.doctor_name}" if consumption.doctor_name else None,
            f"Procedure: {consumption.procedure}" if consumption.procedure else None,
            consumption.notes,
        ]
        return DeliveryNoteRequest(
            card_code=location.erp_card_code,
            card_name=location.name,
            warehouse_code=self._warehouse_code(location),
            bin_abs_entry=location.erp_bin_abs_entry,
            comments=" | ".join(d for d in details if d) or None,
            lines=tuple(
                ErpLineRequest(
                    item_code=item.erp_item_code or self._item_code(item.product_id),
                    quantity=item.quantity,
                    batch_number=item.lot_number,
                    price=item.unit_price,
                    currency=item.currency,
                )
                for item in consumption.items
            ),
        )

    def _purchase_delivery_note(self, receipt_id: UUID) -> PurchaseDeliveryNoteRequest:
        receipt = self.session.get(GoodsReceiptModel, receipt_id)
        if receipt is None:
            raise DocumentNotFoundError("GoodsReceipt", receipt_id)
        if not receipt.supplier_code:
            raise ValidationError(
                "A goods receipt needs a supplier code to reach the ERP", field="supplier_code"
            )
        location = self._location(receipt.location_id)
        return PurchaseDeliveryNoteRequest(
            card_code=receipt.supplier_code,
            warehouse_code=self._warehouse_code(location),
            doc_date=self.clock.now().date(),
            comments=receipt.notes,
            lines=tuple(
                ErpLineRequest(
                    item_code=self._item_code(item.product_id),
                    quantity=item.quantity,
                    batch_number=item.lot_number,
                    expiry_date=item.expiry_date,
                )
                for item in receipt.items
            ),
        )


class SyncService:
    """
    Contract:
        ``push`` handles the first attempt for a PENDING tracker;
        ``retry_failed`` sweeps FAILED trackers under the retry lock.

    Non-goals:
        - Does NOT decide when to sweep (scripts/retry_sync.py and the
          operations facade do).
    """

    def __init__(
        self,
        erp: ErpClient,
        max_retries: int = MAX_SYNC_RETRIES,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
    ):
        self.erp = erp
        self.max_retries = max_retries
        self.lease_seconds = lease_seconds

    def _trackers(self, session: Session, tenant_ctx: TenantContext) -> SyncTrackerService:
        return SyncTrackerService(session, tenant_ctx.clock, self.max_retries)

    def push(self, tenant_ctx: TenantContext, tracker_id: UUID) -> SyncTrackerSnapshot:
        with tenant_ctx.session_scope() as session:
            tracker = self._trackers(session, tenant_ctx).get(tracker_id)
            if tracker.status_enum != SyncStatus.PENDING:
                raise SyncRetryNotAllowedError(
                    tracker_id, f"push requires PENDING, tracker is {tracker.status}"
                )
            request, outcome = self._prepare(session, tenant_ctx, tracker)

        if outcome is None:
            outcome = self._send(request, tracker_id)

        with tenant_ctx.session_scope() as session:
            return self._trackers(session, tenant_ctx).record_push_outcome(tracker_id, outcome)

    def retry_failed(
        self, tenant_ctx: TenantContext, limit: int | None = None
    ) -> RetrySweepResult:
        with tenant_ctx.session_scope() as session:
            tracker_ids = [
                t.id for t in self._trackers(session, tenant_ctx).list_retryable(limit)
            ]

        claimed = synced = failed = skipped = 0
        for tracker_id in tracker_ids:
            with LogContext.bind(document_id=tracker_id):
                with tenant_ctx.session_scope() as session:
                    claim = self._trackers(session, tenant_ctx).claim_for_retry(
                        tracker_id, self.lease_seconds
                    )
                if claim is None:
                    skipped += 1
                    continue
                claimed += 1

                snapshot = self._retry_one(tenant_ctx, claim)
                if snapshot is None:
                    skipped += 1
                elif snapshot.status == SyncStatus.SYNCED:
                    synced += 1
                else:
                    failed += 1

        result = RetrySweepResult(
            examined=len(tracker_ids),
            claimed=claimed,
            synced=synced,
            failed=failed,
            skipped=skipped,
        )
        logger.info(
            "sync_retry_sweep_completed",
            extra={
                "tenant_id": tenant_ctx.tenant_id,
                "examined": result.examined,
                "claimed": result.claimed,
                "synced": result.synced,
                "failed": result.failed,
                "skipped": result.skipped,
            },
        )
        return result

    def _retry_one(
        self, tenant_ctx: TenantContext, claim: RetryClaim
    ) -> SyncTrackerSnapshot | None:
        with tenant_ctx.session_scope() as session:
            tracker = self._trackers(session, tenant_ctx).get(claim.tracker_id)
            request, outcome = self._prepare(session, tenant_ctx, tracker)

        if outcome is None:
            outcome = self._send(request, claim.tracker_id)

        try:
            with tenant_ctx.session_scope() as session:
                return self._trackers(session, tenant_ctx).complete_retry(claim, outcome)
        except SyncRetryNotAllowedError:
            logger.warning(
                "sync_retry_lease_lost",
                extra={"tracker_id": str(claim.tracker_id), "accepted": outcome.accepted},
            )
            return None

    def _prepare(
        self, session: Session, tenant_ctx: TenantContext, tracker: SyncTrackerModel
    ) -> tuple[ErpRequest | None, SyncOutcome | None]:
        try:
            return ErpRequestBuilder(session, tenant_ctx.clock).build(tracker), None
        except (ValidationError, NotFoundError) as exc:
            logger.warning(
                "sync_request_unmappable",
                extra={"tracker_id": str(tracker.id), "error": str(exc)},
            )
            return None, SyncOutcome.failure(str(exc), retryable=False)

    def _send(self, request: ErpRequest, tracker_id: UUID) -> SyncOutcome:
        try:
            if isinstance(request, StockTransferRequest):
                ref = self.erp.create_stock_transfer(request)
            elif isinstance(request, DeliveryNoteRequest):
                ref = self.erp.create_delivery_note(request)
            else:
                ref = self.erp.create_purchase_delivery_note(request)
        except ExternalSystemError as exc:
            logger.warning(
                "sync_push_failed",
                extra={
                    "tracker_id": str(tracker_id),
                    "error": str(exc),
                    "retryable": exc.retryable,
                    "status_code": exc.status_code,
                },
            )
            return SyncOutcome.failure(str(exc), exc.retryable)
        return SyncOutcome.success(ref)
