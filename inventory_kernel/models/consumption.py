"""
Module: inventory_kernel.models.consumption
Responsibility: Consumption of consigned stock at a centro (a procedure used
    one or more devices).
Architecture position: Kernel > Models.

Invariants enforced:
    - ``total_items``, ``total_quantity`` and ``total_value`` are recomputed
      from the item list on every flush that touches the document or its
      items.  Values assigned directly are overwritten.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase
from inventory_kernel.domain.dtos import ConsumptionSnapshot
from inventory_kernel.domain.types import DocumentOrigin
from inventory_kernel.models.sync_tracker import SyncTrackerModel


class ConsumptionModel(TrackedBase):
    __tablename__ = "consumptions"

    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("locations.id"), nullable=False, index=True
    )
    patient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    doctor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    procedure: Mapped[str | None] = mapped_column(String(200), nullable=True)
    procedure_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocumentOrigin.APP.value
    )

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    sync_tracker_id: Mapped[UUID] = mapped_column(
        ForeignKey("external_sync_trackers.id"), nullable=False, unique=True
    )
    sync_tracker: Mapped[SyncTrackerModel] = relationship()

    items: Mapped[list[ConsumptionItemModel]] = relationship(
        back_populates="consumption",
        order_by="ConsumptionItemModel.line_number",
        cascade="all, delete-orphan",
    )

    def recompute_totals(self) -> None:
        self.total_items = len(self.items)
        self.total_quantity = sum(item.quantity for item in self.items)
        self.total_value = sum(
            (Decimal(item.quantity) * item.unit_price for item in self.items),
            Decimal("0"),
        )

    def to_dto(self) -> ConsumptionSnapshot:
        return ConsumptionSnapshot(
            id=self.id,
            location_id=self.location_id,
            origin=DocumentOrigin(self.origin),
            total_items=self.total_items,
            total_quantity=self.total_quantity,
            total_value=self.total_value,
            transaction_ids=tuple(item.transaction_id for item in self.items),
            sync=self.sync_tracker.to_dto(),
        )


class ConsumptionItemModel(Base):
    __tablename__ = "consumption_items"

    consumption_id: Mapped[UUID] = mapped_column(
        ForeignKey("consumptions.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    erp_item_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transactions.id"), nullable=False
    )

    consumption: Mapped[ConsumptionModel] = relationship(back_populates="items")


@event.listens_for(Session, "before_flush")
def _recompute_consumption_totals(session, flush_context, instances):
    touched: set[ConsumptionModel] = set()
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, ConsumptionModel):
            touched.add(obj)
        elif isinstance(obj, ConsumptionItemModel) and obj.consumption is not None:
            touched.add(obj.consumption)
    for consumption in touched:
        consumption.recompute_totals()
