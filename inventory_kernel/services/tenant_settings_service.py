"""
TenantSettingsService -- the go-live date and its provenance.

The go-live date is normally set once by the initial inventory sync
(``GoLiveSource.SYNC_SCRIPT``) and may be corrected by an operator
(``GoLiveSource.MANUAL``).  Reconciliation treats every ERP document dated
before it as pre-existing.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import TenantConfigSnapshot
from inventory_kernel.domain.types import GoLiveSource
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.tenant_settings import TenantSettingsModel
from inventory_kernel.services.base import BaseService

logger = get_logger("services.tenant_settings")


def normalize_go_live(value: date | datetime) -> datetime:
    """Dates mean midnight UTC; naive datetimes are rejected."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise ValidationError("Go-live date must be timezone-aware", field="go_live_date")
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError(f"Invalid go-live date: {value!r}", field="go_live_date")


class TenantSettingsService(BaseService[TenantSettingsModel]):
    def get_config(self, tenant_id: str) -> TenantConfigSnapshot:
        row = self._get_row(tenant_id)
        if row is None:
            return TenantConfigSnapshot(
                tenant_id=tenant_id,
                go_live_date=None,
                go_live_set_by=None,
                go_live_set_by_id=None,
                go_live_set_at=None,
            )
        return row.to_dto()

    def set_go_live_date(
        self,
        tenant_id: str,
        go_live_date: date | datetime,
        actor_id: UUID | None,
        source: GoLiveSource = GoLiveSource.MANUAL,
    ) -> TenantConfigSnapshot:
        value = normalize_go_live(go_live_date)
        row = self._get_row(tenant_id, for_update=True)
        if row is None:
            row = TenantSettingsModel(tenant_id=tenant_id)
            self.session.add(row)

        previous = row.go_live_date
        row.go_live_date = value
        row.go_live_set_by = source.value
        row.go_live_set_by_id = actor_id
        row.go_live_set_at = self.clock.now()
        self.session.flush()

        logger.info(
            "go_live_date_set",
            extra={
                "tenant_id": tenant_id,
                "go_live_date": value,
                "previous_go_live_date": previous,
                "source": source.value,
            },
        )
        return row.to_dto()

    def lock_for_run(self, tenant_id: str) -> TenantSettingsModel:
        """Lock (creating if needed) the settings row before starting a run.

        Writing the row takes the store's write lock on SQLite and the row
        lock on PostgreSQL, so two run starts for one tenant are serialized.
        """
        row = self._get_row(tenant_id, for_update=True)
        if row is None:
            row = TenantSettingsModel(tenant_id=tenant_id)
            self.session.add(row)
        row.last_run_started_at = self.clock.now()
        self.session.flush()
        return row

    def _get_row(self, tenant_id: str, for_update: bool = False) -> TenantSettingsModel | None:
        stmt = select(TenantSettingsModel).where(TenantSettingsModel.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()
