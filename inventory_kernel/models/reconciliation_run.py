"""
Module: inventory_kernel.models.reconciliation_run
Responsibility: One record per reconciliation execution.
Architecture position: Kernel > Models.

Each run writes its own row; no shared counters are mutated across runs.
A crash leaves a STARTED row, which the next run marks FAILED once it is
older than the stale threshold.

State machine:
    STARTED -> SUCCEEDED | PARTIAL | FAILED | NOT_CONFIGURED
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.dtos import ReconciliationRunSnapshot
from inventory_kernel.domain.types import DateSource, RunStatus, RunType

TERMINAL_STATUSES = frozenset({
    RunStatus.SUCCEEDED,
    RunStatus.PARTIAL,
    RunStatus.FAILED,
    RunStatus.NOT_CONFIGURED,
})


class ReconciliationRunModel(Base):
    __tablename__ = "reconciliation_runs"

    __table_args__ = (
        Index("idx_recon_run_tenant_started", "tenant_id", "started_at"),
        Index("idx_recon_run_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    run_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.STARTED.value
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    window_from: Mapped[datetime | None] = mapped_column(nullable=True)
    window_to: Mapped[datetime | None] = mapped_column(nullable=True)
    date_source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DateSource.NONE.value
    )
    document_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    stats: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    documents_checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_docs_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_docs_new: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    triggered_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def status_enum(self) -> RunStatus:
        return RunStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    def to_dto(self) -> ReconciliationRunSnapshot:
        return ReconciliationRunSnapshot(
            id=self.id,
            tenant_id=self.tenant_id,
            run_type=RunType(self.run_type),
            status=self.status_enum,
            started_at=self.started_at,
            completed_at=self.completed_at,
            window_from=self.window_from,
            window_to=self.window_to,
            date_source=DateSource(self.date_source),
            documents_checked=self.documents_checked,
            external_docs_found=self.external_docs_found,
            external_docs_new=self.external_docs_new,
            stats=dict(self.stats or {}),
            errors=tuple(self.errors or ()),
        )
