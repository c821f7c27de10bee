"""
DocumentService -- goods receipts and consumptions.

Responsibility:
    Wraps LotLedger.receive / LotLedger.consume into the documents the ERP
    knows about: a GoodsReceipt (purchase delivery note) for warehouse
    intake and a Consumption (delivery note) for stock used at a centro.
    Each document gets one sync tracker.

Architecture position:
    Kernel > Services -- imperative shell over LotLedger.

Invariants enforced:
    - App-originated documents start with a PENDING tracker.  Documents
      imported from the ERP carry ``erp_ref`` and start SYNCED with the ERP
      identifiers, so reconciliation classifies them as known.
    - Consumption totals are recomputed from the items on flush.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import (
    ConsumptionItemInput,
    ConsumptionSnapshot,
    ErpDocumentRef,
    GoodsReceiptSnapshot,
    ReceiptItemInput,
)
from inventory_kernel.domain.types import DocumentOrigin, ErpDocType, SyncOwnerKind
from inventory_kernel.exceptions import LocationNotFoundError, ProductNotFoundError, ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.consumption import ConsumptionItemModel, ConsumptionModel
from inventory_kernel.models.goods_receipt import GoodsReceiptItemModel, GoodsReceiptModel
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lot_ledger import LotLedger
from inventory_kernel.services.sync_tracker_service import SyncTrackerService

logger = get_logger("services.documents")


class DocumentService(BaseService[GoodsReceiptModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LotLedger | None = None,
        trackers: SyncTrackerService | None = None,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or LotLedger(session, self.clock)
        self.trackers = trackers or SyncTrackerService(session, self.clock)

    def receive_goods(
        self,
        location_id: UUID,
        items: Sequence[ReceiptItemInput],
        actor_id: UUID,
        supplier: str | None = None,
        supplier_code: str | None = None,
        notes: str | None = None,
        origin: DocumentOrigin = DocumentOrigin.APP,
        erp_ref: ErpDocumentRef | None = None,
    ) -> GoodsReceiptSnapshot:
        if not items:
            raise ValidationError("A goods receipt needs at least one item", field="items")
        if self.session.get(LocationModel, location_id) is None:
            raise LocationNotFoundError(location_id)

        receipt_id = uuid4()
        tracker = self.trackers.create(
            SyncOwnerKind.GOODS_RECEIPT,
            receipt_id,
            ErpDocType.PURCHASE_DELIVERY_NOTE,
            synced_ref=erp_ref,
        )
        receipt = GoodsReceiptModel(
            id=receipt_id,
            location_id=location_id,
            supplier=supplier,
            supplier_code=supplier_code,
            notes=notes,
            origin=origin.value,
            sync_tracker_id=tracker.id,
            created_by_id=actor_id,
        )
        receipt.sync_tracker = tracker

        for line_number, item in enumerate(items, start=1):
            result = self.ledger.receive(
                product_id=item.product_id,
                location_id=location_id,
                lot_number=item.lot_number,
                quantity=item.quantity,
                expiry_date=item.expiry_date,
                actor_id=actor_id,
                supplier=supplier,
                unit_cost=item.unit_cost,
            )
            receipt.items.append(
                GoodsReceiptItemModel(
                    line_number=line_number,
                    product_id=item.product_id,
                    lot_id=result.lot.id,
                    transaction_id=result.transaction_id,
                    lot_number=result.lot.lot_number,
                    quantity=item.quantity,
                    expiry_date=result.lot.expiry_date,
                    unit_cost=item.unit_cost,
                )
            )

        self.session.add(receipt)
        self.session.flush()

        logger.info(
            "goods_receipt_created",
            extra={
                "goods_receipt_id": str(receipt_id),
                "location_id": str(location_id),
                "item_count": len(items),
                "origin": origin.value,
            },
        )
        return receipt.to_dto()

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
        origin: DocumentOrigin = DocumentOrigin.APP,
        erp_ref: ErpDocumentRef | None = None,
    ) -> ConsumptionSnapshot:
        if not items:
            raise ValidationError("A consumption needs at least one item", field="items")
        if self.session.get(LocationModel, location_id) is None:
            raise LocationNotFoundError(location_id)

        consumption_id = uuid4()
        tracker = self.trackers.create(
            SyncOwnerKind.CONSUMPTION,
            consumption_id,
            ErpDocType.DELIVERY_NOTE,
            synced_ref=erp_ref,
        )
        consumption = ConsumptionModel(
            id=consumption_id,
            location_id=location_id,
            patient_name=patient_name,
            doctor_name=doctor_name,
            procedure=procedure,
            procedure_date=procedure_date,
            notes=notes,
            origin=origin.value,
            sync_tracker_id=tracker.id,
            created_by_id=actor_id,
        )
        consumption.sync_tracker = tracker

        payload = {
            "consumption_id": str(consumption_id),
            "patient_name": patient_name,
            "doctor_name": doctor_name,
            "procedure": procedure,
            "procedure_date": procedure_date.isoformat() if procedure_date else None,
        }
        for line_number, item in enumerate(items, start=1):
            product = self.session.get(ProductModel, item.product_id)
            if product is None:
                raise ProductNotFoundError(item.product_id)
            result = self.ledger.consume(
                product_id=item.product_id,
                lot_id=item.lot_id,
                location_id=location_id,
                quantity=item.quantity,
                actor_id=actor_id,
                payload=payload,
            )
            unit_price = item.unit_price if item.unit_price is not None else product.unit_price
            consumption.items.append(
                ConsumptionItemModel(
                    line_number=line_number,
                    product_id=item.product_id,
                    lot_id=result.lot.id,
                    lot_number=result.lot.lot_number,
                    erp_item_code=product.erp_item_code,
                    quantity=item.quantity,
                    unit_price=Decimal(unit_price),
                    currency=product.currency,
                    transaction_id=result.transaction_id,
                )
            )

        self.session.add(consumption)
        self.session.flush()

        logger.info(
            "consumption_recorded",
            extra={
                "consumption_id": str(consumption_id),
                "location_id": str(location_id),
                "total_items": consumption.total_items,
                "total_quantity": consumption.total_quantity,
                "total_value": consumption.total_value,
                "origin": origin.value,
            },
        )
        return consumption.to_dto()
