"""
Module: inventory_kernel.exceptions
Responsibility: Typed exception hierarchy for the ledger, the sync path and
    reconciliation.  Every exception carries a machine-readable ``code`` class
    attribute and stores its context as attributes, never only in the message.
Architecture position: Kernel.  Imported by every layer; imports nothing.

Categories:
    ValidationError        bad input shape, rejected before any mutation
    NotFoundError          referenced product/location/lot/document absent
    InsufficientStockError quantity exceeds the lot's available partition
    LocationMismatchError  lot is not at the location the caller claimed
    ConsistencyError       a write would break a partition invariant
    ConflictError          duplicate lot number with a different expiry,
                           illegal workflow transitions, concurrent runs
    ConcurrencyError       optimistic version conflict on a lot
    ExternalSystemError    ERP unreachable or rejected the request
    ConfigurationError     missing tenant or go-live configuration

Error codes are class attributes so callers can branch on
``InsufficientStockError.code`` without instantiating, and the structured
logger copies every public attribute into the JSON record.
"""

from datetime import date
from typing import Any


class InventoryError(Exception):
    """
    Base exception for all inventory ledger errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "INVENTORY_ERROR"


# Input validation


class ValidationError(InventoryError):
    """Input failed shape or range validation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Lookups


class NotFoundError(InventoryError):
    """Referenced entity does not exist in the tenant store."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ref: Any):
        super().__init__("Product", product_ref)


class LocationNotFoundError(NotFoundError):
    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_ref: Any):
        super().__init__("Location", location_ref)


class LotNotFoundError(NotFoundError):
    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_ref: Any):
        super().__init__("Lot", lot_ref)


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: Any):
        super().__init__(document_type, document_id)


# Stock movement


class InsufficientStockError(InventoryError):
    """
    Requested quantity exceeds the lot's available partition.

    ``available`` is the lot's actual available quantity so the operator can
    correct the request without a second lookup.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, lot_number: str, requested: int, available: int):
        self.lot_number = lot_number
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock in lot {lot_number}: "
            f"requested {requested}, available {available}"
        )


class LocationMismatchError(InventoryError):
    """Lot is not at the location the caller claimed."""

    code: str = "LOCATION_MISMATCH"

    def __init__(self, lot_id: Any, expected_location_id: Any, actual_location_id: Any):
        self.lot_id = str(lot_id)
        self.expected_location_id = str(expected_location_id)
        self.actual_location_id = str(actual_location_id)
        super().__init__(
            f"Lot {lot_id} is at location {actual_location_id}, "
            f"not {expected_location_id}"
        )


class ConsistencyError(InventoryError):
    """
    A computed lot state would violate a partition invariant.

    Never expected in normal operation; indicates corrupted stored state.
    """

    code: str = "CONSISTENCY_VIOLATION"

    def __init__(self, lot_id: Any, detail: str):
        self.lot_id = str(lot_id)
        self.detail = detail
        super().__init__(f"Consistency violation on lot {lot_id}: {detail}")


# Conflicts


class ConflictError(InventoryError):
    """Request conflicts with existing state."""

    code: str = "CONFLICT"


class ExpiryConflictError(ConflictError):
    """Lot number already exists at the location with a different expiry."""

    code: str = "EXPIRY_CONFLICT"

    def __init__(self, lot_number: str, existing_expiry: date, incoming_expiry: date):
        self.lot_number = lot_number
        self.existing_expiry = existing_expiry
        self.incoming_expiry = incoming_expiry
        super().__init__(
            f"Lot {lot_number} already exists with expiry {existing_expiry.isoformat()}; "
            f"received expiry {incoming_expiry.isoformat()}"
        )


class InvalidConsignmentTransitionError(ConflictError):
    code: str = "INVALID_CONSIGNMENT_TRANSITION"

    def __init__(self, consignment_id: Any, from_status: str, to_status: str):
        self.consignment_id = str(consignment_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Consignment {consignment_id} cannot move from {from_status} to {to_status}"
        )


class ReconciliationInProgressError(ConflictError):
    """Another reconciliation run for the tenant is still running."""

    code: str = "RECONCILIATION_IN_PROGRESS"

    def __init__(self, tenant_id: str, run_id: Any):
        self.tenant_id = tenant_id
        self.run_id = str(run_id)
        super().__init__(
            f"Reconciliation run {run_id} is already in progress for tenant {tenant_id}"
        )


class SyncRetryNotAllowedError(ConflictError):
    """Sync tracker is not in a state that allows the requested transition."""

    code: str = "SYNC_RETRY_NOT_ALLOWED"

    def __init__(self, tracker_id: Any, reason: str):
        self.tracker_id = str(tracker_id)
        self.reason = reason
        super().__init__(f"Sync transition not allowed for tracker {tracker_id}: {reason}")


# Concurrency


class ConcurrencyError(InventoryError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic version conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityViolationError(InventoryError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# External system


class ExternalSystemError(InventoryError):
    """
    ERP request failed.

    ``retryable`` is True when the ERP could not be reached or answered with
    a server-side error; False when it rejected the document.
    """

    code: str = "EXTERNAL_SYSTEM_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
    ):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


# Configuration


class ConfigurationError(InventoryError):
    """Tenant or reconciliation configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, tenant_id: str | None = None):
        self.tenant_id = tenant_id
        super().__init__(message)
