"""
Module: inventory_kernel.models.master_data
Responsibility: Products and locations referenced by lots and documents.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

A product with an ``erp_item_code`` is tracked by reconciliation; a location
with an ``erp_warehouse_code`` can be the source or target of ERP documents.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.types import LocationType


class ProductModel(TrackedBase):
    """A catalogued medical device (guidewire, stent, ...)."""

    __tablename__ = "products"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    erp_item_code: Mapped[str | None] = mapped_column(
        String(50), nullable=True, unique=True, index=True
    )
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.code}: {self.name}>"


class LocationModel(TrackedBase):
    """The central warehouse or a remote centro."""

    __tablename__ = "locations"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    location_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LocationType.WAREHOUSE.value
    )
    erp_warehouse_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True, index=True
    )
    # Bin location used for transfer allocations, when the warehouse is bin-managed
    erp_bin_abs_entry: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Customer code used as CardCode on delivery notes for consumption at this site
    erp_card_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def location_type_enum(self) -> LocationType:
        return LocationType(self.location_type)

    def __repr__(self) -> str:
        return f"<Location {self.name} ({self.location_type})>"
