"""
inventory_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel ledger, the reconciliation
    classifier and the ERP client.  This is the only layer that talks to
    the ERP and the only layer that iterates tenants.

Architecture position:
    Services -- outermost layer.

    Dependency direction:
        inventory_services/ -> inventory_engines/, inventory_erp/,
                               inventory_config/, inventory_kernel/  (allowed)
        inventory_kernel/   -> inventory_services/                  (FORBIDDEN)
        inventory_engines/  -> inventory_services/                  (FORBIDDEN)

Audit relevance:
    - This package is the import surface for HTTP handlers and scripts.
"""

from inventory_services.import_service import ExternalImportService, ImportResult
from inventory_services.nightly import TenantRunOutcome, run_nightly, run_retry_sweep
from inventory_services.operations import InventoryOperations
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sync_service import ErpRequestBuilder, SyncService

__all__ = [
    "ErpRequestBuilder",
    "ExternalImportService",
    "ImportResult",
    "InventoryOperations",
    "ReconciliationService",
    "SyncService",
    "TenantRunOutcome",
    "run_nightly",
    "run_retry_sweep",
]
