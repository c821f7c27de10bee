"""
inventory_services.import_service -- bring an external ERP document into the
local ledger.

Responsibility:
    Turns a reviewed ExternalDocument into the matching local document:
    a purchase delivery note becomes a goods receipt, a delivery note
    becomes a consumption.  The new document's sync tracker is created
    SYNCED with the ERP identifiers, so the next reconciliation run
    classifies the ERP document as known.

Architecture position:
    Services -- orchestration over DocumentService.  Lookup, ledger
    movements and the IMPORTED status change share one transaction.

Failure modes:
    - DocumentNotFoundError: unknown external document.
    - ValidationError: document already imported or ignored, stock
      transfer (not importable), lines without batches, fractional
      quantities, missing expiry dates, or lines spanning several locations.
    - ProductNotFoundError / LocationNotFoundError / LotNotFoundError:
      ERP codes with no local mapping.
    - Any LotLedger error (the import rolls back as a whole).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.db.tenancy import TenantContext
from inventory_kernel.domain.dtos import (
    ConsumptionItemInput,
    ConsumptionSnapshot,
    ErpDocumentRef,
    ExternalDocumentSnapshot,
    GoodsReceiptSnapshot,
    ReceiptItemInput,
)
from inventory_kernel.domain.types import DocumentOrigin, ErpDocType, ExternalDocumentStatus
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    LocationNotFoundError,
    LotNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.external_document import ExternalDocumentModel
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.document_service import DocumentService

logger = get_logger("services.import")

IMPORTABLE_STATUSES = frozenset({
    ExternalDocumentStatus.PENDING_REVIEW,
    ExternalDocumentStatus.ACKNOWLEDGED,
})


@dataclass(frozen=True)
class ImportResult:
    external_document: ExternalDocumentSnapshot
    goods_receipt: GoodsReceiptSnapshot | None = None
    consumption: ConsumptionSnapshot | None = None


def _whole_quantity(raw: Any, item_code: str) -> int:
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid quantity {raw!r} for {item_code}", field="quantity") from exc
    if value != value.to_integral_value() or value <= 0:
        raise ValidationError(
            f"Quantity {raw} for {item_code} must be a positive whole number", field="quantity"
        )
    return int(value)


class ExternalImportService:
    def import_document(
        self, tenant_ctx: TenantContext, document_id: UUID, actor_id: UUID
    ) -> ImportResult:
        with tenant_ctx.session_scope() as session:
            doc = session.get(ExternalDocumentModel, document_id, with_for_update=True)
            if doc is None:
                raise DocumentNotFoundError("ExternalDocument", document_id)
            if doc.status_enum not in IMPORTABLE_STATUSES:
                raise ValidationError(
                    f"External document {document_id} is {doc.status} and cannot be imported",
                    field="status",
                )

            doc_type = ErpDocType(doc.erp_doc_type)
            documents = DocumentService(session, tenant_ctx.clock)
            ref = ErpDocumentRef(doc_entry=doc.erp_doc_entry, doc_num=doc.erp_doc_num)
            notes = f"Imported from ERP {doc_type.value} {doc.erp_doc_num or doc.erp_doc_entry}"

            receipt = consumption = None
            if doc_type == ErpDocType.PURCHASE_DELIVERY_NOTE:
                receipt = self._import_receipt(session, doc, documents, ref, actor_id, notes)
            elif doc_type == ErpDocType.DELIVERY_NOTE:
                consumption = self._import_consumption(
                    session, doc, documents, ref, actor_id, notes
                )
            else:
                raise ValidationError(
                    f"{doc_type.value} documents cannot be imported", field="erp_doc_type"
                )

            doc.status = ExternalDocumentStatus.IMPORTED.value
            doc.reviewed_by_id = actor_id
            doc.reviewed_at = tenant_ctx.clock.now()
            session.flush()

            logger.info(
                "external_document_imported",
                extra={
                    "external_document_id": str(document_id),
                    "erp_doc_type": doc_type.value,
                    "erp_doc_entry": doc.erp_doc_entry,
                    "local_document_id": str((receipt or consumption).id),
                },
            )
            return ImportResult(
                external_document=doc.to_dto(),
                goods_receipt=receipt,
                consumption=consumption,
            )

    # ------------------------------------------------------------------

    def _import_receipt(
        self,
        session: Session,
        doc: ExternalDocumentModel,
        documents: DocumentService,
        ref: ErpDocumentRef,
        actor_id: UUID,
        notes: str,
    ) -> GoodsReceiptSnapshot:
        location = self._single_location(session, doc.items)
        items = []
        for line in doc.items:
            product = self._product(session, line["item_code"])
            for batch in self._batches(line):
                if not batch.get("expiry_date"):
                    raise ValidationError(
                        f"Batch {batch['batch_number']} of {line['item_code']} has no expiry date",
                        field="expiry_date",
                    )
                items.append(
                    ReceiptItemInput(
                        product_id=product.id,
                        lot_number=batch["batch_number"],
                        quantity=_whole_quantity(batch["quantity"], line["item_code"]),
                        expiry_date=date.fromisoformat(batch["expiry_date"]),
                        unit_cost=Decimal(line["price"]) if line.get("price") else None,
                    )
                )

        return documents.receive_goods(
            location_id=location.id,
            items=items,
            actor_id=actor_id,
            supplier=doc.card_name,
            supplier_code=doc.card_code,
            notes=notes,
            origin=DocumentOrigin.EXTERNAL_IMPORT,
            erp_ref=ref,
        )

    def _import_consumption(
        self,
        session: Session,
        doc: ExternalDocumentModel,
        documents: DocumentService,
        ref: ErpDocumentRef,
        actor_id: UUID,
        notes: str,
    ) -> ConsumptionSnapshot:
        location = self._single_location(session, doc.items)
        lots = InventorySelector(session)
        items = []
        for line in doc.items:
            product = self._product(session, line["item_code"])
            for batch in self._batches(line):
                lot = lots.find_lot(product.id, batch["batch_number"], location.id)
                if lot is None:
                    raise LotNotFoundError(f"{batch['batch_number']} at {location.name}")
                items.append(
                    ConsumptionItemInput(
                        product_id=product.id,
                        lot_id=lot.id,
                        quantity=_whole_quantity(batch["quantity"], line["item_code"]),
                        unit_price=Decimal(line["price"]) if line.get("price") else None,
                    )
                )

        return documents.record_consumption(
            location_id=location.id,
            items=items,
            actor_id=actor_id,
            notes=notes,
            origin=DocumentOrigin.EXTERNAL_IMPORT,
            erp_ref=ref,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _batches(line: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        batches = line.get("batches") or []
        if not batches:
            raise ValidationError(
                f"Line for {line['item_code']} carries no batch numbers", field="batches"
            )
        return batches

    @staticmethod
    def _product(session: Session, item_code: str) -> ProductModel:
        product = session.execute(
            select(ProductModel).where(
                ProductModel.erp_item_code == item_code,
                ProductModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(f"ERP item {item_code}")
        return product

    def _single_location(self, session: Session, lines: list[Mapping[str, Any]]) -> LocationModel:
        if not lines:
            raise ValidationError("External document has no tracked lines", field="items")
        resolved = [
            self._location(session, line.get("warehouse_code"), line.get("bin_abs_entry"))
            for line in lines
        ]
        if len({location.id for location in resolved}) != 1:
            raise ValidationError(
                "Document lines span several locations; import them separately",
                field="warehouse_code",
            )
        return resolved[0]

    @staticmethod
    def _location(
        session: Session, warehouse_code: str | None, bin_abs_entry: int | None
    ) -> LocationModel:
        """Bin match first; otherwise the warehouse location without a bin."""
        if bin_abs_entry is not None:
            by_bin = session.execute(
                select(LocationModel).where(LocationModel.erp_bin_abs_entry == bin_abs_entry)
            ).scalars().first()
            if by_bin is not None:
                return by_bin
        if warehouse_code:
            location = session.execute(
                select(LocationModel)
                .where(LocationModel.erp_warehouse_code == warehouse_code)
                .order_by(LocationModel.erp_bin_abs_entry.is_not(None), LocationModel.name)
            ).scalars().first()
            if location is not None:
                return location
        raise LocationNotFoundError(f"ERP warehouse {warehouse_code} bin {bin_abs_entry}")
