"""
inventory_kernel.domain.types -- status enums shared by models, services and
engines.  ZERO I/O.

Values are the strings persisted in the tenant store and exchanged with the
ERP, so renaming a member is a data migration.
"""

from enum import Enum


class LotStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    EXPIRED = "EXPIRED"
    RECALLED = "RECALLED"


class LocationType(str, Enum):
    WAREHOUSE = "WAREHOUSE"
    CENTRO = "CENTRO"  # Remote hospital/clinic site holding consigned stock


class TransactionType(str, Enum):
    WAREHOUSE_RECEIPT = "WAREHOUSE_RECEIPT"
    CONSIGNMENT_OUT = "CONSIGNMENT_OUT"
    CONSUMPTION = "CONSUMPTION"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"


class ConsignmentStatus(str, Enum):
    EN_TRANSITO = "EN_TRANSITO"  # In transit, quantities not yet confirmed
    RECIBIDO = "RECIBIDO"  # Receiving site confirmed quantities


class DocumentOrigin(str, Enum):
    APP = "APP"
    EXTERNAL_IMPORT = "EXTERNAL_IMPORT"  # Created from a reconciled ERP document


class SyncStatus(str, Enum):
    PENDING = "PENDING"  # Not yet pushed
    SYNCED = "SYNCED"  # ERP accepted the document
    FAILED = "FAILED"  # Last push was rejected or the ERP was unreachable
    RETRYING = "RETRYING"  # A retry worker holds the lock


class ErpDocType(str, Enum):
    """ERP document kinds, valued by their Service Layer entity names."""

    STOCK_TRANSFER = "StockTransfers"
    DELIVERY_NOTE = "DeliveryNotes"
    PURCHASE_DELIVERY_NOTE = "PurchaseDeliveryNotes"


class SyncOwnerKind(str, Enum):
    CONSIGNMENT = "CONSIGNMENT"
    CONSUMPTION = "CONSUMPTION"
    GOODS_RECEIPT = "GOODS_RECEIPT"


class ExternalDocumentStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IMPORTED = "IMPORTED"
    IGNORED = "IGNORED"


class DetectionSource(str, Enum):
    NIGHTLY_JOB = "NIGHTLY_JOB"
    ON_DEMAND = "ON_DEMAND"


class RunType(str, Enum):
    NIGHTLY = "NIGHTLY"
    MANUAL = "MANUAL"


class RunStatus(str, Enum):
    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"  # Zero errors
    PARTIAL = "PARTIAL"  # Some phases failed, run completed
    FAILED = "FAILED"  # ERP unreachable, every phase failed, or run went stale
    NOT_CONFIGURED = "NOT_CONFIGURED"  # No go-live date; nothing scanned


class DateSource(str, Enum):
    GO_LIVE_DATE = "GO_LIVE_DATE"
    CUSTOM_RANGE = "CUSTOM_RANGE"
    NONE = "NONE"


class GoLiveSource(str, Enum):
    SYNC_SCRIPT = "SYNC_SCRIPT"  # Set by the initial inventory sync
    MANUAL = "MANUAL"


class RunPhase(str, Enum):
    """Phase tags for run errors that are not tied to a document type."""

    SETUP = "SETUP"
    CONNECTION = "CONNECTION"
    SYSTEM = "SYSTEM"
