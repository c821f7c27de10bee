"""
inventory_erp -- SAP Business One Service Layer integration.
"""

from inventory_erp.client import ErpClient, ServiceLayerClient
from inventory_erp.documents import parse_document
from inventory_erp.odata import sanitize_odata_value
from inventory_erp.payloads import (
    DeliveryNoteRequest,
    ErpLineRequest,
    PurchaseDeliveryNoteRequest,
    StockTransferRequest,
)

__all__ = [
    "DeliveryNoteRequest",
    "ErpClient",
    "ErpLineRequest",
    "PurchaseDeliveryNoteRequest",
    "ServiceLayerClient",
    "StockTransferRequest",
    "parse_document",
    "sanitize_odata_value",
]
