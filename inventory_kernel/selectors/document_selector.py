"""
DocumentSelector -- consignments, receipts, consumptions and the ERP keys
of every locally-originated document.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import (
    ConsignmentSnapshot,
    ConsumptionSnapshot,
    GoodsReceiptSnapshot,
)
from inventory_kernel.domain.types import ConsignmentStatus, ErpDocType
from inventory_kernel.exceptions import DocumentNotFoundError
from inventory_kernel.models.consignment import STALE_AFTER, ConsignmentModel
from inventory_kernel.models.consumption import ConsumptionModel
from inventory_kernel.models.goods_receipt import GoodsReceiptModel
from inventory_kernel.models.sync_tracker import SyncTrackerModel
from inventory_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[ConsignmentModel]):
    def get_consignment(self, consignment_id: UUID, now: datetime) -> ConsignmentSnapshot:
        consignment = self.session.get(ConsignmentModel, consignment_id)
        if consignment is None:
            raise DocumentNotFoundError("Consignment", consignment_id)
        return consignment.to_dto(now)

    def list_consignments(
        self,
        now: datetime,
        status: ConsignmentStatus | None = None,
        to_location_id: UUID | None = None,
    ) -> list[ConsignmentSnapshot]:
        stmt = select(ConsignmentModel).order_by(ConsignmentModel.sent_at.desc())
        if status is not None:
            stmt = stmt.where(ConsignmentModel.status == status.value)
        if to_location_id is not None:
            stmt = stmt.where(ConsignmentModel.to_location_id == to_location_id)
        return [c.to_dto(now) for c in self.session.execute(stmt).scalars()]

    def list_stale_consignments(self, now: datetime) -> list[ConsignmentSnapshot]:
        """EN_TRANSITO consignments older than the grace period."""
        stmt = (
            select(ConsignmentModel)
            .where(
                ConsignmentModel.status == ConsignmentStatus.EN_TRANSITO.value,
                ConsignmentModel.sent_at < now - STALE_AFTER,
            )
            .order_by(ConsignmentModel.sent_at)
        )
        return [c.to_dto(now) for c in self.session.execute(stmt).scalars()]

    def get_goods_receipt(self, receipt_id: UUID) -> GoodsReceiptSnapshot:
        receipt = self.session.get(GoodsReceiptModel, receipt_id)
        if receipt is None:
            raise DocumentNotFoundError("GoodsReceipt", receipt_id)
        return receipt.to_dto()

    def get_consumption(self, consumption_id: UUID) -> ConsumptionSnapshot:
        consumption = self.session.get(ConsumptionModel, consumption_id)
        if consumption is None:
            raise DocumentNotFoundError("Consumption", consumption_id)
        return consumption.to_dto()

    def known_erp_keys(self, doc_type: ErpDocType) -> tuple[frozenset[int], frozenset[int]]:
        """(doc entries, doc nums) the ERP assigned to local documents of ``doc_type``."""
        rows = self.session.execute(
            select(SyncTrackerModel.erp_doc_entry, SyncTrackerModel.erp_doc_num).where(
                SyncTrackerModel.erp_doc_type == doc_type.value,
            )
        ).all()
        entries = frozenset(entry for entry, _ in rows if entry is not None)
        nums = frozenset(num for _, num in rows if num is not None)
        return entries, nums
