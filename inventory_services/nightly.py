"""
inventory_services.nightly -- multi-tenant reconciliation and retry sweeps.

Responsibility:
    The entrypoint a scheduler calls.  Iterates the active tenants from the
    TenantDirectory (or only the single configured tenant) and runs
    reconciliation, or the sync retry sweep, for each one in isolation.

Invariants enforced:
    - Each tenant gets its own TenantContext, ERP client and log context.
    - A failure for one tenant is logged and reported; the sweep continues
      with the next tenant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from inventory_config.directory import TenantDirectory
from inventory_config.schema import AppSettings, TenantEntry
from inventory_erp.client import ErpClient, ServiceLayerClient
from inventory_kernel.db.tenancy import TenantStoreRegistry
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ReconciliationRunSnapshot, RetrySweepResult
from inventory_kernel.domain.types import RunType
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sync_service import SyncService

logger = get_logger("services.nightly")

ErpFactory = Callable[[TenantEntry], "ErpClient | None"]


@dataclass(frozen=True)
class TenantRunOutcome:
    tenant_id: str
    run: ReconciliationRunSnapshot | None = None
    sweep: RetrySweepResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def default_erp_factory(settings: AppSettings) -> ErpFactory:
    def factory(tenant: TenantEntry) -> ErpClient | None:
        erp_settings = settings.erp_for(tenant)
        if not erp_settings.configured:
            return None
        return ServiceLayerClient(erp_settings)

    return factory


def _tenants(directory: TenantDirectory, tenant_id: str | None) -> list[TenantEntry]:
    if tenant_id is not None:
        return [directory.get(tenant_id)]
    return directory.list_active_tenants()


def run_nightly(
    directory: TenantDirectory,
    settings: AppSettings,
    erp_factory: ErpFactory | None = None,
    clock: Clock | None = None,
    registry: TenantStoreRegistry | None = None,
    tenant_id: str | None = None,
) -> list[TenantRunOutcome]:
    """Reconcile every active tenant (or just ``tenant_id``)."""
    erp_factory = erp_factory or default_erp_factory(settings)
    registry = registry or TenantStoreRegistry(directory.database_url, clock=clock)
    outcomes: list[TenantRunOutcome] = []

    tenants = _tenants(directory, tenant_id)
    logger.info("nightly_reconciliation_started", extra={"tenant_count": len(tenants)})

    for tenant in tenants:
        with LogContext.bind(tenant_id=tenant.tenant_id, correlation_id=uuid4()):
            erp = None
            try:
                ctx = registry.context_for(tenant.tenant_id)
                erp = erp_factory(tenant)
                run = ReconciliationService(erp, settings.reconciliation).run(
                    ctx, RunType.NIGHTLY
                )
                outcomes.append(TenantRunOutcome(tenant.tenant_id, run=run))
            except Exception as exc:
                logger.exception("nightly_tenant_failed")
                outcomes.append(TenantRunOutcome(tenant.tenant_id, error=str(exc)))
            finally:
                if erp is not None:
                    erp.close()

    logger.info(
        "nightly_reconciliation_completed",
        extra={
            "tenant_count": len(outcomes),
            "failed_tenants": [o.tenant_id for o in outcomes if not o.ok],
        },
    )
    return outcomes


def run_retry_sweep(
    directory: TenantDirectory,
    settings: AppSettings,
    erp_factory: ErpFactory | None = None,
    clock: Clock | None = None,
    registry: TenantStoreRegistry | None = None,
    tenant_id: str | None = None,
) -> list[TenantRunOutcome]:
    """Retry failed ERP pushes for every active tenant (or just ``tenant_id``)."""
    erp_factory = erp_factory or default_erp_factory(settings)
    registry = registry or TenantStoreRegistry(directory.database_url, clock=clock)
    recon = settings.reconciliation
    outcomes: list[TenantRunOutcome] = []

    for tenant in _tenants(directory, tenant_id):
        with LogContext.bind(tenant_id=tenant.tenant_id, correlation_id=uuid4()):
            erp = None
            try:
                erp = erp_factory(tenant)
                if erp is None:
                    outcomes.append(
                        TenantRunOutcome(tenant.tenant_id, error="ERP client not configured")
                    )
                    continue
                ctx = registry.context_for(tenant.tenant_id)
                sweep = SyncService(
                    erp, recon.max_sync_retries, recon.retry_lease_seconds
                ).retry_failed(ctx, limit=recon.retry_batch_size)
                outcomes.append(TenantRunOutcome(tenant.tenant_id, sweep=sweep))
            except Exception as exc:
                logger.exception("retry_sweep_tenant_failed")
                outcomes.append(TenantRunOutcome(tenant.tenant_id, error=str(exc)))
            finally:
                if erp is not None:
                    erp.close()
    return outcomes
