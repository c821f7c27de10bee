"""
Module: inventory_kernel.models.sync_tracker
Responsibility: Persisted ERP sync state shared by consignments,
    consumptions and goods receipts.
Architecture position: Kernel > Models.

One row per outbound document.  Documents reference their tracker by
foreign key (composition); the tracker records which document owns it so the
sync path can rebuild the ERP payload.

State machine:
    PENDING  -> SYNCED | FAILED
    FAILED   -> RETRYING          (atomic claim, see SyncTrackerService)
    RETRYING -> RETRYING          (takeover once the lease has expired)
    RETRYING -> SYNCED | FAILED

    SyncTrackerService enforces every edge in the WHERE clause of its
    compare-and-set UPDATEs; the model carries no transition table.

Invariants enforced:
    - ``retrying`` is true exactly while status is RETRYING.
    - ``retry_lease_expires_at`` bounds how long a claim may be held, so a
      crashed worker never blocks retries forever.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.dtos import SyncTrackerSnapshot
from inventory_kernel.domain.types import ErpDocType, SyncStatus


class SyncTrackerModel(Base):
    __tablename__ = "external_sync_trackers"

    __table_args__ = (
        Index("idx_sync_tracker_status", "status", "retrying"),
        Index("idx_sync_tracker_doc", "erp_doc_type", "erp_doc_entry"),
        Index("idx_sync_tracker_doc_num", "erp_doc_type", "erp_doc_num"),
    )

    owner_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    pushed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncStatus.PENDING.value
    )
    erp_doc_type: Mapped[str] = mapped_column(String(40), nullable=False)
    erp_doc_entry: Mapped[int | None] = mapped_column(Integer, nullable=True)
    erp_doc_num: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_date: Mapped[datetime | None] = mapped_column(nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retrying: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retry_lease_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def status_enum(self) -> SyncStatus:
        return SyncStatus(self.status)

    def to_dto(self) -> SyncTrackerSnapshot:
        return SyncTrackerSnapshot(
            id=self.id,
            owner_kind=self.owner_kind,
            pushed=self.pushed,
            status=self.status_enum,
            erp_doc_type=ErpDocType(self.erp_doc_type),
            erp_doc_entry=self.erp_doc_entry,
            erp_doc_num=self.erp_doc_num,
            sync_date=self.sync_date,
            error=self.error,
            retry_count=self.retry_count,
            retrying=self.retrying,
        )

    def __repr__(self) -> str:
        return f"<SyncTracker {self.erp_doc_type} {self.status} retries={self.retry_count}>"
