"""
InventoryAggregator -- per-(product, location) stock projection.

Responsibility:
    Rebuilds the Inventory row for a pair from a full scan of its lots.
    Called synchronously by LotLedger after every movement, and available
    for manual repair via ``recompute_all``.

Invariants enforced:
    - After ``recompute(p, l)`` the Inventory row equals the sum of every
      partition over all lots of (p, l).
    - Idempotent: calling twice yields identical quantities.

Failure modes:
    - A concurrent first insert of the same pair (PostgreSQL) is absorbed by
      a savepoint and retried as an update.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.domain.dtos import InventorySnapshot
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.inventory import InventoryModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.services.base import BaseService

logger = get_logger("services.inventory_aggregator")

_QUANTITY_COLUMNS = (
    "quantity_total",
    "quantity_available",
    "quantity_consigned",
    "quantity_consumed",
    "quantity_damaged",
    "quantity_returned",
)


class InventoryAggregator(BaseService[InventoryModel]):
    """
    Contract:
        ``recompute`` reads, never trusts, the stored aggregate and overwrites
        every quantity column.

    Non-goals:
        - No incremental counters.
    """

    def recompute(self, product_id: UUID, location_id: UUID) -> InventorySnapshot:
        sums = self._sum_lots(product_id, location_id)
        row = self._get_row_for_update(product_id, location_id)

        if row is None:
            try:
                with self.session.begin_nested():
                    row = InventoryModel(product_id=product_id, location_id=location_id)
                    self._apply(row, sums)
                    self.session.add(row)
            except IntegrityError:
                # Another transaction created the row first.
                row = self._get_row_for_update(product_id, location_id)
                self._apply(row, sums)
        else:
            self._apply(row, sums)

        self.session.flush()

        logger.debug(
            "inventory_recomputed",
            extra={
                "product_id": str(product_id),
                "location_id": str(location_id),
                **sums,
            },
        )
        return row.to_dto()

    def recompute_all(self) -> list[InventorySnapshot]:
        """Repair every pair that has at least one lot."""
        pairs = self.session.execute(
            select(LotModel.product_id, LotModel.location_id).distinct()
        ).all()
        results = [self.recompute(product_id, location_id) for product_id, location_id in pairs]
        logger.info("inventory_recompute_all_completed", extra={"pair_count": len(results)})
        return results

    def _sum_lots(self, product_id: UUID, location_id: UUID) -> dict[str, int]:
        columns = [
            func.coalesce(func.sum(getattr(LotModel, name)), 0) for name in _QUANTITY_COLUMNS
        ]
        row = self.session.execute(
            select(*columns).where(
                LotModel.product_id == product_id,
                LotModel.location_id == location_id,
            )
        ).one()
        return {name: int(value) for name, value in zip(_QUANTITY_COLUMNS, row)}

    def _get_row_for_update(self, product_id: UUID, location_id: UUID) -> InventoryModel | None:
        return self.session.execute(
            select(InventoryModel)
            .where(
                InventoryModel.product_id == product_id,
                InventoryModel.location_id == location_id,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _apply(self, row: InventoryModel, sums: dict[str, int]) -> None:
        for name, value in sums.items():
            setattr(row, name, value)
        row.last_movement_at = self.clock.now()
