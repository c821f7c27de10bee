"""
Module: inventory_kernel.models.tenant_settings
Responsibility: Per-tenant reconciliation settings.  Exactly one row per
    tenant store, holding the go-live date and who set it.
Architecture position: Kernel > Models.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.dtos import TenantConfigSnapshot
from inventory_kernel.domain.types import GoLiveSource


class TenantSettingsModel(Base):
    __tablename__ = "tenant_settings"

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    # External documents dated before this instant are pre-existing.
    go_live_date: Mapped[datetime | None] = mapped_column(nullable=True)
    go_live_set_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    go_live_set_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    go_live_set_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Touched when a reconciliation run starts; the row write serializes run starts.
    last_run_started_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> TenantConfigSnapshot:
        return TenantConfigSnapshot(
            tenant_id=self.tenant_id,
            go_live_date=self.go_live_date,
            go_live_set_by=GoLiveSource(self.go_live_set_by) if self.go_live_set_by else None,
            go_live_set_by_id=self.go_live_set_by_id,
            go_live_set_at=self.go_live_set_at,
        )
