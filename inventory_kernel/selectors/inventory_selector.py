"""
InventorySelector -- read side of the lot ledger.

``aggregate_drift`` compares each stored Inventory row with a fresh sum of
its lots and is what repair tooling and the invariant tests use.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.dtos import InventorySnapshot, LotSnapshot
from inventory_kernel.exceptions import LotNotFoundError
from inventory_kernel.models.inventory import InventoryModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.selectors.base import BaseSelector

_COLUMNS = (
    "quantity_total",
    "quantity_available",
    "quantity_consigned",
    "quantity_consumed",
    "quantity_damaged",
    "quantity_returned",
)


class InventorySelector(BaseSelector[InventoryModel]):
    def get_inventory(self, product_id: UUID, location_id: UUID) -> InventorySnapshot | None:
        row = self.session.execute(
            select(InventoryModel).where(
                InventoryModel.product_id == product_id,
                InventoryModel.location_id == location_id,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_inventory(self, location_id: UUID) -> list[InventorySnapshot]:
        rows = self.session.execute(
            select(InventoryModel).where(InventoryModel.location_id == location_id)
        ).scalars()
        return [row.to_dto() for row in rows]

    def get_lot(self, lot_id: UUID) -> LotSnapshot:
        lot = self.session.get(LotModel, lot_id, populate_existing=True)
        if lot is None:
            raise LotNotFoundError(lot_id)
        return lot.to_dto()

    def find_lot(
        self,
        product_id: UUID,
        lot_number: str,
        location_id: UUID,
        consignment_held: bool | None = None,
    ) -> LotSnapshot | None:
        """A location can hold the lot twice: owned and consigned-in.

        Without ``consignment_held`` the consigned-in row wins.
        """
        stmt = select(LotModel).where(
            LotModel.product_id == product_id,
            LotModel.lot_number == lot_number,
            LotModel.location_id == location_id,
        )
        if consignment_held is not None:
            stmt = stmt.where(LotModel.consignment_held.is_(consignment_held))
        lot = self.session.execute(
            stmt.order_by(LotModel.consignment_held.desc()).limit(1)
        ).scalar_one_or_none()
        return lot.to_dto() if lot is not None else None

    def list_lots(
        self,
        location_id: UUID,
        product_id: UUID | None = None,
        with_stock_only: bool = False,
    ) -> list[LotSnapshot]:
        stmt = select(LotModel).where(LotModel.location_id == location_id)
        if product_id is not None:
            stmt = stmt.where(LotModel.product_id == product_id)
        if with_stock_only:
            stmt = stmt.where(LotModel.quantity_available > 0)
        stmt = stmt.order_by(LotModel.expiry_date, LotModel.lot_number)
        return [lot.to_dto() for lot in self.session.execute(stmt).scalars()]

    def aggregate_drift(self) -> list[dict]:
        """Pairs whose stored aggregate differs from the sum of their lots."""
        sums = self.session.execute(
            select(
                LotModel.product_id,
                LotModel.location_id,
                *[func.sum(getattr(LotModel, name)) for name in _COLUMNS],
            ).group_by(LotModel.product_id, LotModel.location_id)
        ).all()

        drift = []
        for product_id, location_id, *values in sums:
            expected = dict(zip(_COLUMNS, (int(v or 0) for v in values)))
            stored = self.get_inventory(product_id, location_id)
            actual = (
                {name: getattr(stored, name) for name in _COLUMNS} if stored is not None else None
            )
            if actual != expected:
                drift.append({
                    "product_id": product_id,
                    "location_id": location_id,
                    "expected": expected,
                    "stored": actual,
                })
        return drift
