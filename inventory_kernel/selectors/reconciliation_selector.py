"""
ReconciliationSelector -- run history, external documents and the tracked
item codes reconciliation filters on.
"""

from __future__ import annotations

from sqlalchemy import func, select

from inventory_kernel.domain.dtos import ExternalDocumentSnapshot, ReconciliationRunSnapshot
from inventory_kernel.domain.types import ErpDocType, ExternalDocumentStatus, RunStatus
from inventory_kernel.models.external_document import ExternalDocumentModel
from inventory_kernel.models.master_data import ProductModel
from inventory_kernel.models.reconciliation_run import ReconciliationRunModel
from inventory_kernel.selectors.base import BaseSelector


class ReconciliationSelector(BaseSelector[ReconciliationRunModel]):
    def latest_run(self, tenant_id: str) -> ReconciliationRunSnapshot | None:
        run = self.session.execute(
            select(ReconciliationRunModel)
            .where(ReconciliationRunModel.tenant_id == tenant_id)
            .order_by(ReconciliationRunModel.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return run.to_dto() if run is not None else None

    def history(
        self, tenant_id: str, limit: int = 20, offset: int = 0
    ) -> list[ReconciliationRunSnapshot]:
        runs = self.session.execute(
            select(ReconciliationRunModel)
            .where(ReconciliationRunModel.tenant_id == tenant_id)
            .order_by(ReconciliationRunModel.started_at.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()
        return [run.to_dto() for run in runs]

    def started_runs(self, tenant_id: str) -> list[ReconciliationRunModel]:
        return list(
            self.session.execute(
                select(ReconciliationRunModel).where(
                    ReconciliationRunModel.tenant_id == tenant_id,
                    ReconciliationRunModel.status == RunStatus.STARTED.value,
                )
            ).scalars()
        )

    def list_external_documents(
        self,
        status: ExternalDocumentStatus | None = None,
        doc_type: ErpDocType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExternalDocumentSnapshot]:
        stmt = select(ExternalDocumentModel).order_by(
            ExternalDocumentModel.doc_date.desc(), ExternalDocumentModel.erp_doc_entry.desc()
        )
        if status is not None:
            stmt = stmt.where(ExternalDocumentModel.status == status.value)
        if doc_type is not None:
            stmt = stmt.where(ExternalDocumentModel.erp_doc_type == doc_type.value)
        docs = self.session.execute(stmt.limit(limit).offset(offset)).scalars()
        return [doc.to_dto() for doc in docs]

    def count_external_documents(self, status: ExternalDocumentStatus) -> int:
        return self.session.execute(
            select(func.count()).select_from(ExternalDocumentModel).where(
                ExternalDocumentModel.status == status.value
            )
        ).scalar_one()

    def tracked_item_codes(self) -> frozenset[str]:
        """ERP item codes of active products; only these are reconciled."""
        codes = self.session.execute(
            select(ProductModel.erp_item_code).where(
                ProductModel.erp_item_code.is_not(None),
                ProductModel.is_active.is_(True),
            )
        ).scalars()
        return frozenset(codes)
