"""
Module: inventory_kernel.models.external_document
Responsibility: Documents found in the ERP with no locally-originated record.
Architecture position: Kernel > Models.

Invariants enforced:
    - (erp_doc_type, erp_doc_entry) is unique: reconciliation upserts on this
      key, so re-running over the same window never duplicates a document.
    - ``status`` is only changed by an operator (review) or by the import path.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.dtos import ExternalDocumentSnapshot
from inventory_kernel.domain.types import ErpDocType, ExternalDocumentStatus

OPERATOR_STATUSES = frozenset({
    ExternalDocumentStatus.ACKNOWLEDGED,
    ExternalDocumentStatus.IMPORTED,
    ExternalDocumentStatus.IGNORED,
})


class ExternalDocumentModel(Base):
    __tablename__ = "external_documents"

    __table_args__ = (
        UniqueConstraint("erp_doc_type", "erp_doc_entry", name="uq_external_doc_key"),
        Index("idx_external_doc_status", "status", "detected_at"),
    )

    erp_doc_type: Mapped[str] = mapped_column(String(40), nullable=False)
    erp_doc_entry: Mapped[int] = mapped_column(Integer, nullable=False)
    erp_doc_num: Mapped[int | None] = mapped_column(Integer, nullable=True)
    doc_date: Mapped[datetime] = mapped_column(nullable=False)
    card_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    card_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    from_warehouse_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_warehouse_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    detected_at: Mapped[datetime] = mapped_column(nullable=False)
    detected_by: Mapped[str] = mapped_column(String(20), nullable=False)
    reconciliation_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_seen_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExternalDocumentStatus.PENDING_REVIEW.value
    )
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def status_enum(self) -> ExternalDocumentStatus:
        return ExternalDocumentStatus(self.status)

    def to_dto(self) -> ExternalDocumentSnapshot:
        return ExternalDocumentSnapshot(
            id=self.id,
            erp_doc_type=ErpDocType(self.erp_doc_type),
            erp_doc_entry=self.erp_doc_entry,
            erp_doc_num=self.erp_doc_num,
            doc_date=self.doc_date,
            card_code=self.card_code,
            card_name=self.card_name,
            items=tuple(self.items or ()),
            status=self.status_enum,
            detected_at=self.detected_at,
            detected_by=self.detected_by,
            reconciliation_run_id=self.reconciliation_run_id,
            reviewed_by_id=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
            notes=self.notes,
        )
