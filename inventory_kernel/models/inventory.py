"""
Module: inventory_kernel.models.inventory
Responsibility: Per-(product, location) stock projection.
Architecture position: Kernel > Models.

Derived, never authoritative: InventoryAggregator overwrites every quantity
from a full scan of the pair's lots.  No incremental counters.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.domain.dtos import InventorySnapshot


class InventoryModel(Base):
    __tablename__ = "inventory"

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
    )

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("locations.id"), nullable=False, index=True
    )

    quantity_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_consigned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_damaged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_returned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> InventorySnapshot:
        return InventorySnapshot(
            product_id=self.product_id,
            location_id=self.location_id,
            quantity_total=self.quantity_total,
            quantity_available=self.quantity_available,
            quantity_consigned=self.quantity_consigned,
            quantity_consumed=self.quantity_consumed,
            quantity_damaged=self.quantity_damaged,
            quantity_returned=self.quantity_returned,
            last_movement_at=self.last_movement_at,
        )
