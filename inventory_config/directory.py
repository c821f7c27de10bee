"""
TenantDirectory -- which tenant stores exist and where they live.

Single-tenant mode (``INVENTORY_TENANT_ID`` or ``single_tenant_id``)
restricts the active set to that one tenant; it must still be declared.
"""

from __future__ import annotations

from inventory_config.schema import AppSettings, TenantEntry
from inventory_kernel.exceptions import ConfigurationError


class TenantDirectory:
    def __init__(self, settings: AppSettings):
        self._settings = settings
        self._tenants = {t.tenant_id: t for t in settings.tenants}

    @property
    def single_tenant_id(self) -> str | None:
        return self._settings.single_tenant_id

    def get(self, tenant_id: str) -> TenantEntry:
        entry = self._tenants.get(tenant_id)
        if entry is None:
            raise ConfigurationError(f"Unknown tenant {tenant_id}", tenant_id=tenant_id)
        return entry

    def database_url(self, tenant_id: str) -> str | None:
        """URL resolver for TenantStoreRegistry; None for unknown tenants."""
        entry = self._tenants.get(tenant_id)
        return entry.database_url if entry is not None else None

    def list_active_tenants(self) -> list[TenantEntry]:
        if self.single_tenant_id:
            entry = self.get(self.single_tenant_id)
            return [entry] if entry.active else []
        return [t for t in self._settings.tenants if t.active]
