"""
Settings schema (``inventory_config.schema``).

Every settings object is a frozen dataclass.  Parsing lives in
``inventory_config.loader``; nothing here reads files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from inventory_kernel.domain.types import ErpDocType


@dataclass(frozen=True)
class ErpSettings:
    """Connection to the SAP Business One Service Layer."""

    base_url: str
    company_db: str
    username: str
    password: str = field(default="", repr=False)
    verify_ssl: bool = True
    timeout_seconds: float = 30.0
    session_minutes: int = 25
    max_pages: int = 100

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.company_db and self.username)

    def for_company(self, company_db: str | None) -> ErpSettings:
        return replace(self, company_db=company_db) if company_db else self


@dataclass(frozen=True)
class ReconciliationSettings:
    stale_run_minutes: int = 60
    document_types: tuple[ErpDocType, ...] = (
        ErpDocType.STOCK_TRANSFER,
        ErpDocType.DELIVERY_NOTE,
        ErpDocType.PURCHASE_DELIVERY_NOTE,
    )
    max_sync_retries: int = 5
    retry_lease_seconds: int = 300
    retry_batch_size: int = 100


@dataclass(frozen=True)
class TenantEntry:
    """One tenant store.  ``erp_company_db`` overrides the shared company DB."""

    tenant_id: str
    database_url: str = field(repr=False)
    active: bool = True
    erp_company_db: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class AppSettings:
    erp: ErpSettings
    reconciliation: ReconciliationSettings
    tenants: tuple[TenantEntry, ...] = ()
    single_tenant_id: str | None = None
    log_level: str = "INFO"
    source_path: str | None = None

    def erp_for(self, tenant: TenantEntry) -> ErpSettings:
        return self.erp.for_company(tenant.erp_company_db)
