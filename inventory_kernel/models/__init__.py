"""ORM models for one tenant store."""

from inventory_kernel.models.consignment import ConsignmentItemModel, ConsignmentModel
from inventory_kernel.models.consumption import ConsumptionItemModel, ConsumptionModel
from inventory_kernel.models.external_document import ExternalDocumentModel
from inventory_kernel.models.goods_receipt import GoodsReceiptItemModel, GoodsReceiptModel
from inventory_kernel.models.inventory import InventoryModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.models.reconciliation_run import ReconciliationRunModel
from inventory_kernel.models.stock_transaction import StockTransactionModel
from inventory_kernel.models.sync_tracker import SyncTrackerModel
from inventory_kernel.models.tenant_settings import TenantSettingsModel

__all__ = [
    "ConsignmentItemModel",
    "ConsignmentModel",
    "ConsumptionItemModel",
    "ConsumptionModel",
    "ExternalDocumentModel",
    "GoodsReceiptItemModel",
    "GoodsReceiptModel",
    "InventoryModel",
    "LocationModel",
    "LotModel",
    "ProductModel",
    "ReconciliationRunModel",
    "StockTransactionModel",
    "SyncTrackerModel",
    "TenantSettingsModel",
    "import_all_models",
]


def import_all_models() -> None:
    """
    Ensure every table is registered on Base.metadata.

    Importing this package already imports every model module; schema helpers
    call this so the dependency is explicit.  Idempotent.
    """
