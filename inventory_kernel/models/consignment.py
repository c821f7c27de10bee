"""
Module: inventory_kernel.models.consignment
Responsibility: Bulk transfer of lots from one location to another, with an
    in-transit phase before the receiving site confirms quantities.
Architecture position: Kernel > Models.

State machine:
    EN_TRANSITO -> RECIBIDO   (terminal)

``is_old`` is derived from ``created_at`` and never stored; it never forces
a transition.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import ConsignmentItemSnapshot, ConsignmentSnapshot
from inventory_kernel.domain.types import ConsignmentStatus
from inventory_kernel.models.sync_tracker import SyncTrackerModel

STALE_AFTER = timedelta(days=3)

VALID_TRANSITIONS: dict[ConsignmentStatus, frozenset[ConsignmentStatus]] = {
    ConsignmentStatus.EN_TRANSITO: frozenset({ConsignmentStatus.RECIBIDO}),
    ConsignmentStatus.RECIBIDO: frozenset(),
}


class ConsignmentModel(TrackedBase):
    __tablename__ = "consignments"

    __table_args__ = (
        Index("idx_consignment_status_created", "status", "created_at"),
    )

    from_location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    to_location_id: Mapped[UUID] = mapped_column(
        ForeignKey("locations.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConsignmentStatus.EN_TRANSITO.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set from the injected clock; created_at is server time.
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    confirmation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    sync_tracker_id: Mapped[UUID] = mapped_column(
        ForeignKey("external_sync_trackers.id"), nullable=False, unique=True
    )
    sync_tracker: Mapped[SyncTrackerModel] = relationship()

    items: Mapped[list[ConsignmentItemModel]] = relationship(
        back_populates="consignment",
        order_by="ConsignmentItemModel.line_number",
        cascade="all, delete-orphan",
    )

    @property
    def status_enum(self) -> ConsignmentStatus:
        return ConsignmentStatus(self.status)

    def is_old(self, now: datetime) -> bool:
        return (
            self.status_enum == ConsignmentStatus.EN_TRANSITO
            and now - self.sent_at > STALE_AFTER
        )

    def to_dto(self, now: datetime) -> ConsignmentSnapshot:
        return ConsignmentSnapshot(
            id=self.id,
            from_location_id=self.from_location_id,
            to_location_id=self.to_location_id,
            status=self.status_enum,
            items=tuple(item.to_dto() for item in self.items),
            created_at=self.sent_at,
            confirmed_at=self.confirmed_at,
            is_old=self.is_old(now),
            sync=self.sync_tracker.to_dto(),
            notes=self.notes,
        )


class ConsignmentItemModel(Base):
    __tablename__ = "consignment_items"

    consignment_id: Mapped[UUID] = mapped_column(
        ForeignKey("consignments.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    source_lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)
    destination_lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_sent: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discrepancy: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transactions.id"), nullable=False
    )

    consignment: Mapped[ConsignmentModel] = relationship(back_populates="items")

    def to_dto(self) -> ConsignmentItemSnapshot:
        return ConsignmentItemSnapshot(
            id=self.id,
            product_id=self.product_id,
            lot_number=self.lot_number,
            source_lot_id=self.source_lot_id,
            destination_lot_id=self.destination_lot_id,
            quantity_sent=self.quantity_sent,
            quantity_received=self.quantity_received,
            discrepancy=self.discrepancy,
        )
