"""Kernel services: flush-only writers over one tenant store session."""

from inventory_kernel.services.consignment_service import ConsignmentService
from inventory_kernel.services.document_service import DocumentService
from inventory_kernel.services.inventory_aggregator import InventoryAggregator
from inventory_kernel.services.lot_ledger import LotLedger
from inventory_kernel.services.sync_tracker_service import (
    MAX_SYNC_RETRIES,
    RetryClaim,
    SyncTrackerService,
)
from inventory_kernel.services.tenant_settings_service import TenantSettingsService

__all__ = [
    "ConsignmentService",
    "DocumentService",
    "InventoryAggregator",
    "LotLedger",
    "MAX_SYNC_RETRIES",
    "RetryClaim",
    "SyncTrackerService",
    "TenantSettingsService",
]
