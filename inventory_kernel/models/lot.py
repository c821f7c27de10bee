"""
Module: inventory_kernel.models.lot
Responsibility: ORM persistence for lots -- one receipt batch of one product
    at one location, holding disjoint quantity partitions.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - (product_id, lot_number, location_id) is unique.  A lot moves by being
      recreated at the destination, never by changing location_id.
    - Every partition is non-negative (CHECK constraints).
    - ``version`` is the SQLAlchemy version_id_col: an UPDATE that lost a race
      raises StaleDataError instead of silently overwriting.
    - Partition-sum invariant: enforced by LotLedger before every write, see
      ``partition_violation``.

Failure modes:
    - IntegrityError on a duplicate (product, lot number, location, held)
      key; LotLedger turns a lost insert race into OptimisticLockError.
    - StaleDataError on a concurrent update of the same lot.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.dtos import LotSnapshot
from inventory_kernel.domain.types import LotStatus

PARTITIONS = (
    "quantity_available",
    "quantity_consigned",
    "quantity_consumed",
    "quantity_damaged",
    "quantity_returned",
)


class LotModel(TrackedBase):
    """
    Persistent lot with quantity partitions.

    Contract:
        Only LotLedger mutates quantities.  ``consignment_held`` marks lots
        created or credited at a destination by a transfer; at such a lot the
        consigned partition mirrors stock that is still available, so the
        partition sum excludes it (see ``partition_violation``).

    Non-goals:
        - Lots are never deleted; exhausted lots become DEPLETED.
    """

    __tablename__ = "lots"

    __table_args__ = (
        # Owned stock and consigned-in stock of one lot number keep separate rows.
        UniqueConstraint(
            "product_id",
            "lot_number",
            "location_id",
            "consignment_held",
            name="uq_lot_product_number_location_held",
        ),
        Index("idx_lot_product_location", "product_id", "location_id"),
        CheckConstraint("quantity_total >= 0", name="ck_lot_total_nonneg"),
        CheckConstraint("quantity_available >= 0", name="ck_lot_available_nonneg"),
        CheckConstraint("quantity_consigned >= 0", name="ck_lot_consigned_nonneg"),
        CheckConstraint("quantity_consumed >= 0", name="ck_lot_consumed_nonneg"),
        CheckConstraint("quantity_damaged >= 0", name="ck_lot_damaged_nonneg"),
        CheckConstraint("quantity_returned >= 0", name="ck_lot_returned_nonneg"),
    )

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    quantity_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_consigned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_damaged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_returned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    consignment_held: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LotStatus.ACTIVE.value
    )

    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> LotStatus:
        return LotStatus(self.status)

    def partition_violation(self) -> str | None:
        """Describe how the current quantities break the partition rules, or None."""
        for name in ("quantity_total", *PARTITIONS):
            if getattr(self, name) < 0:
                return f"{name} is negative ({getattr(self, name)})"

        if self.consignment_held:
            parts = (
                self.quantity_available
                + self.quantity_consumed
                + self.quantity_damaged
                + self.quantity_returned
            )
            if self.quantity_consigned > self.quantity_available:
                return (
                    f"consigned {self.quantity_consigned} exceeds "
                    f"available {self.quantity_available} on a consignment-held lot"
                )
        else:
            parts = sum(getattr(self, name) for name in PARTITIONS)

        if parts != self.quantity_total:
            return f"partitions sum to {parts}, total is {self.quantity_total}"
        return None

    def to_dto(self) -> LotSnapshot:
        return LotSnapshot(
            id=self.id,
            product_id=self.product_id,
            location_id=self.location_id,
            lot_number=self.lot_number,
            expiry_date=self.expiry_date,
            quantity_total=self.quantity_total,
            quantity_available=self.quantity_available,
            quantity_consigned=self.quantity_consigned,
            quantity_consumed=self.quantity_consumed,
            quantity_damaged=self.quantity_damaged,
            quantity_returned=self.quantity_returned,
            status=self.status_enum,
            consignment_held=self.consignment_held,
        )

    def __repr__(self) -> str:
        return (
            f"<Lot {self.lot_number} @ {self.location_id}: "
            f"total={self.quantity_total} available={self.quantity_available}>"
        )
