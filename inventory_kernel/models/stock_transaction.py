"""
Module: inventory_kernel.models.stock_transaction
Responsibility: Append-only log of every ledger mutation.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are immutable once flushed.  ORM listeners registered at import
      reject any UPDATE or DELETE with ImmutabilityViolationError.

Audit relevance:
    The log is the audit trail for physical stock: who moved which lot,
    how much, from where to where, and the receipt/consumption context.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.types import TransactionStatus, TransactionType
from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("models.stock_transaction")


class StockTransactionModel(Base):
    __tablename__ = "stock_transactions"

    __table_args__ = (
        Index("idx_stock_txn_lot", "lot_id"),
        Index("idx_stock_txn_product_occurred", "product_id", "occurred_at"),
    )

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    from_location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("locations.id"), nullable=True
    )
    to_location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("locations.id"), nullable=True
    )
    # Destination lot credited by a CONSIGNMENT_OUT
    destination_lot_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.COMPLETED.value
    )

    @property
    def transaction_type_enum(self) -> TransactionType:
        return TransactionType(self.transaction_type)

    def __repr__(self) -> str:
        return f"<StockTransaction {self.transaction_type} lot={self.lot_number} qty={self.quantity}>"


def _reject_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "StockTransaction", "entity_id": str(target.id), "operation": "UPDATE"},
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=target.id,
        reason="Stock transactions are append-only",
    )


def _reject_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "StockTransaction", "entity_id": str(target.id), "operation": "DELETE"},
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=target.id,
        reason="Stock transactions cannot be deleted",
    )


event.listen(StockTransactionModel, "before_update", _reject_update)
event.listen(StockTransactionModel, "before_delete", _reject_delete)
