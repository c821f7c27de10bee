"""
Module: inventory_kernel.models.goods_receipt
Responsibility: Warehouse intake document.  Each item points to the lot and
    stock transaction its ledger receive produced.
Architecture position: Kernel > Models.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase
from inventory_kernel.domain.dtos import GoodsReceiptSnapshot
from inventory_kernel.domain.types import DocumentOrigin
from inventory_kernel.models.sync_tracker import SyncTrackerModel


class GoodsReceiptModel(TrackedBase):
    __tablename__ = "goods_receipts"

    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("locations.id"), nullable=False, index=True
    )
    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    supplier_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocumentOrigin.APP.value
    )

    sync_tracker_id: Mapped[UUID] = mapped_column(
        ForeignKey("external_sync_trackers.id"), nullable=False, unique=True
    )
    sync_tracker: Mapped[SyncTrackerModel] = relationship()

    items: Mapped[list[GoodsReceiptItemModel]] = relationship(
        back_populates="goods_receipt",
        order_by="GoodsReceiptItemModel.line_number",
        cascade="all, delete-orphan",
    )

    def to_dto(self) -> GoodsReceiptSnapshot:
        return GoodsReceiptSnapshot(
            id=self.id,
            location_id=self.location_id,
            supplier=self.supplier,
            origin=DocumentOrigin(self.origin),
            lot_ids=tuple(item.lot_id for item in self.items),
            transaction_ids=tuple(item.transaction_id for item in self.items),
            total_quantity=sum(item.quantity for item in self.items),
            sync=self.sync_tracker.to_dto(),
        )


class GoodsReceiptItemModel(Base):
    __tablename__ = "goods_receipt_items"

    goods_receipt_id: Mapped[UUID] = mapped_column(
        ForeignKey("goods_receipts.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)
    transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transactions.id"), nullable=False
    )
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    goods_receipt: Mapped[GoodsReceiptModel] = relationship(back_populates="items")
