"""
inventory_kernel.domain.dtos -- frozen dataclasses crossing layer boundaries.

Services return these instead of ORM instances; engines consume and produce
only these.  Collections are tuples so snapshots stay immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from inventory_kernel.domain.types import (
    ConsignmentStatus,
    DateSource,
    DocumentOrigin,
    ErpDocType,
    ExternalDocumentStatus,
    GoLiveSource,
    LotStatus,
    RunStatus,
    RunType,
    SyncStatus,
)


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class LotSnapshot:
    id: UUID
    product_id: UUID
    location_id: UUID
    lot_number: str
    expiry_date: date
    quantity_total: int
    quantity_available: int
    quantity_consigned: int
    quantity_consumed: int
    quantity_damaged: int
    quantity_returned: int
    status: LotStatus
    consignment_held: bool


@dataclass(frozen=True)
class InventorySnapshot:
    product_id: UUID
    location_id: UUID
    quantity_total: int
    quantity_available: int
    quantity_consigned: int
    quantity_consumed: int
    quantity_damaged: int
    quantity_returned: int
    last_movement_at: datetime | None


@dataclass(frozen=True)
class MovementResult:
    """Outcome of one ledger primitive.

    ``lot`` is the debited/credited lot; for transfers ``destination_lot`` is
    the lot credited at the destination.  ``inventories`` holds every
    aggregate row recomputed by the call, source first.
    """

    transaction_id: UUID
    lot: LotSnapshot
    inventories: tuple[InventorySnapshot, ...]
    destination_lot: LotSnapshot | None = None


# =============================================================================
# Document inputs
# =============================================================================


@dataclass(frozen=True)
class ReceiptItemInput:
    product_id: UUID
    lot_number: str
    quantity: int
    expiry_date: date
    unit_cost: Decimal | None = None


@dataclass(frozen=True)
class TransferItemInput:
    product_id: UUID
    lot_id: UUID
    quantity: int


@dataclass(frozen=True)
class ConsumptionItemInput:
    product_id: UUID
    lot_id: UUID
    quantity: int
    unit_price: Decimal | None = None  # Defaults to the product's price


# =============================================================================
# Sync tracker
# =============================================================================


@dataclass(frozen=True)
class ErpDocumentRef:
    """Identifiers the ERP assigned to a created document."""

    doc_entry: int
    doc_num: int | None = None


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one push attempt against the ERP."""

    accepted: bool
    ref: ErpDocumentRef | None = None
    error: str | None = None
    retryable: bool = False

    @classmethod
    def success(cls, ref: ErpDocumentRef) -> SyncOutcome:
        return cls(accepted=True, ref=ref)

    @classmethod
    def failure(cls, error: str, retryable: bool) -> SyncOutcome:
        return cls(accepted=False, error=error, retryable=retryable)


@dataclass(frozen=True)
class SyncTrackerSnapshot:
    id: UUID
    owner_kind: str
    pushed: bool
    status: SyncStatus
    erp_doc_type: ErpDocType
    erp_doc_entry: int | None
    erp_doc_num: int | None
    sync_date: datetime | None
    error: str | None
    retry_count: int
    retrying: bool


@dataclass(frozen=True)
class RetrySweepResult:
    examined: int = 0
    claimed: int = 0
    synced: int = 0
    failed: int = 0
    skipped: int = 0


# =============================================================================
# Documents
# =============================================================================


@dataclass(frozen=True)
class ConsignmentItemSnapshot:
    id: UUID
    product_id: UUID
    lot_number: str
    source_lot_id: UUID
    destination_lot_id: UUID
    quantity_sent: int
    quantity_received: int | None
    discrepancy: int | None


@dataclass(frozen=True)
class ConsignmentSnapshot:
    id: UUID
    from_location_id: UUID
    to_location_id: UUID
    status: ConsignmentStatus
    items: tuple[ConsignmentItemSnapshot, ...]
    created_at: datetime
    confirmed_at: datetime | None
    is_old: bool
    sync: SyncTrackerSnapshot
    notes: str | None = None

    @property
    def discrepancies(self) -> tuple[ConsignmentItemSnapshot, ...]:
        return tuple(i for i in self.items if i.discrepancy)


@dataclass(frozen=True)
class GoodsReceiptSnapshot:
    id: UUID
    location_id: UUID
    supplier: str | None
    origin: DocumentOrigin
    lot_ids: tuple[UUID, ...]
    transaction_ids: tuple[UUID, ...]
    total_quantity: int
    sync: SyncTrackerSnapshot


@dataclass(frozen=True)
class ConsumptionSnapshot:
    id: UUID
    location_id: UUID
    origin: DocumentOrigin
    total_items: int
    total_quantity: int
    total_value: Decimal
    transaction_ids: tuple[UUID, ...]
    sync: SyncTrackerSnapshot


# =============================================================================
# ERP documents (reconciliation input)
# =============================================================================


@dataclass(frozen=True)
class ErpDocumentLine:
    item_code: str
    quantity: Decimal
    batch_numbers: tuple[str, ...] = ()
    warehouse_code: str | None = None
    from_warehouse_code: str | None = None
    price: Decimal | None = None
    batch_expiry: dict[str, date] = field(default_factory=dict)
    batch_quantities: dict[str, Decimal] = field(default_factory=dict)
    bin_abs_entry: int | None = None


@dataclass(frozen=True)
class ErpDocument:
    doc_type: ErpDocType
    doc_entry: int
    doc_num: int | None
    doc_date: datetime
    card_code: str | None = None
    card_name: str | None = None
    from_warehouse_code: str | None = None
    to_warehouse_code: str | None = None
    comments: str | None = None
    lines: tuple[ErpDocumentLine, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReconciliationWindow:
    window_from: datetime
    window_to: datetime
    date_source: DateSource


@dataclass(frozen=True)
class RunError:
    timestamp: datetime
    phase: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "phase": self.phase,
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True)
class ReconciliationRunSnapshot:
    id: UUID
    tenant_id: str
    run_type: RunType
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None
    window_from: datetime | None
    window_to: datetime | None
    date_source: DateSource
    documents_checked: int
    external_docs_found: int
    external_docs_new: int
    stats: dict[str, Any]
    errors: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class ExternalDocumentSnapshot:
    id: UUID
    erp_doc_type: ErpDocType
    erp_doc_entry: int
    erp_doc_num: int | None
    doc_date: datetime
    card_code: str | None
    card_name: str | None
    items: tuple[dict[str, Any], ...]
    status: ExternalDocumentStatus
    detected_at: datetime
    detected_by: str
    reconciliation_run_id: UUID | None
    reviewed_by_id: UUID | None
    reviewed_at: datetime | None
    notes: str | None


@dataclass(frozen=True)
class TenantConfigSnapshot:
    tenant_id: str
    go_live_date: datetime | None
    go_live_set_by: GoLiveSource | None
    go_live_set_by_id: UUID | None
    go_live_set_at: datetime | None


@dataclass(frozen=True)
class ReconciliationStatus:
    tenant_id: str
    last_run: ReconciliationRunSnapshot | None
    in_progress: bool
    pending_review: int
    go_live_date: datetime | None
