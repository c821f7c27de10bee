"""
LotLedger -- receive, transfer and consume against lot quantity partitions.

Responsibility:
    The only writer of lot quantities.  Every primitive validates its input,
    locks the lot(s) it touches, computes the new partitions, verifies the
    partition invariant, appends one stock transaction and recomputes the
    affected Inventory rows, all inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the document services
    (consignments, consumptions, goods receipts) and the operations facade.

Invariants enforced:
    - Every partition is non-negative.
    - Ordinary lots:  available + consigned + consumed + damaged + returned == total.
    - Consignment-held lots (credited at a destination by a transfer):
      available + consumed + damaged + returned == total and
      consigned <= available.
    - A stock transaction is appended only after every validation passed.
    - The Inventory rows of every touched pair are recomputed before the
      primitive returns.
    - Same-lot writes are serialized: SELECT ... FOR UPDATE plus the lot's
      version column.
    - Owned and consignment-held stock of one lot number at one location
      are separate rows; receipts credit the owned row, transfers the held
      one.

Failure modes:
    - ValidationError: bad quantity, empty lot number, same source and
      destination, product/lot mismatch, re-consigning held stock.
    - ProductNotFoundError / LocationNotFoundError / LotNotFoundError.
    - ExpiryConflictError: lot number reused with a different expiry.
    - LocationMismatchError: lot is not where the caller says it is.
    - InsufficientStockError: quantity exceeds available.
    - ConsistencyError: the computed state breaks the partition invariant.
    - OptimisticLockError: a concurrent transaction updated the lot first,
      or inserted the same new lot first.

Audit relevance:
    Every successful primitive leaves exactly one StockTransactionModel row
    and one ``lot_*`` log event.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import MovementResult
from inventory_kernel.domain.types import LotStatus, TransactionType
from inventory_kernel.exceptions import (
    ConsistencyError,
    ExpiryConflictError,
    InsufficientStockError,
    LocationMismatchError,
    LocationNotFoundError,
    LotNotFoundError,
    OptimisticLockError,
    ProductNotFoundError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.lot import PARTITIONS, LotModel
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.models.stock_transaction import StockTransactionModel
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.inventory_aggregator import InventoryAggregator

logger = get_logger("services.lot_ledger")


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Quantity must be an integer, got {quantity!r}", field="quantity")
    if quantity <= 0:
        raise ValidationError(f"Quantity must be positive, got {quantity}", field="quantity")
    return quantity


class LotLedger(BaseService[LotModel]):
    """
    Contract:
        Three movement primitives, each atomic at single-lot granularity
        within the caller's transaction.  Returns ``MovementResult``.

    Guarantees:
        - Nothing is flushed until every validation has passed; an
          invariant violation restores the lot's in-memory partitions
          before raising.  The caller's rollback discards the rest.

    Non-goals:
        - Does NOT commit.  Does NOT retry on OptimisticLockError; the
          operations facade re-runs the whole call.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        aggregator: InventoryAggregator | None = None,
    ):
        super().__init__(session, clock)
        self.aggregator = aggregator or InventoryAggregator(session, self.clock)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def receive(
        self,
        product_id: UUID,
        location_id: UUID,
        lot_number: str,
        quantity: int,
        expiry_date: date | datetime,
        actor_id: UUID,
        supplier: str | None = None,
        unit_cost: Decimal | None = None,
        received_at: datetime | None = None,
    ) -> MovementResult:
        """Receive ``quantity`` units of a lot into ``location_id``.

        An existing lot with the same (product, lot number, location) is
        topped up after its expiry date is checked; otherwise a new ACTIVE
        lot is created.
        """
        quantity = _validate_quantity(quantity)
        lot_number = (lot_number or "").strip()
        if not lot_number:
            raise ValidationError("Lot number is required", field="lot_number")
        if expiry_date is None:
            raise ValidationError("Expiry date is required", field="expiry_date")
        expiry = _as_date(expiry_date)

        self._get_product(product_id)
        self._get_location(location_id)
        now = self.clock.now()

        lot = self._find_lot_for_update(
            product_id, lot_number, location_id, consignment_held=False
        )
        if lot is not None:
            if lot.expiry_date != expiry:
                logger.warning(
                    "lot_expiry_conflict",
                    extra={
                        "lot_id": str(lot.id),
                        "lot_number": lot_number,
                        "existing_expiry": lot.expiry_date,
                        "incoming_expiry": expiry,
                    },
                )
                raise ExpiryConflictError(lot_number, lot.expiry_date, expiry)
            self._apply(
                lot,
                actor_id,
                quantity_total=lot.quantity_total + quantity,
                quantity_available=lot.quantity_available + quantity,
            )
            if lot.status_enum == LotStatus.DEPLETED:
                lot.status = LotStatus.ACTIVE.value
            created = False
        else:
            lot = LotModel(
                product_id=product_id,
                location_id=location_id,
                lot_number=lot_number,
                expiry_date=expiry,
                quantity_total=quantity,
                quantity_available=quantity,
                quantity_consigned=0,
                quantity_consumed=0,
                quantity_damaged=0,
                quantity_returned=0,
                consignment_held=False,
                status=LotStatus.ACTIVE.value,
                received_at=received_at or now,
                supplier=supplier,
                unit_cost=unit_cost,
                created_by_id=actor_id,
            )
            self._check_invariant(lot)
            self._insert_lot(lot)
            created = True

        self._flush(lot)

        txn = self._append_transaction(
            TransactionType.WAREHOUSE_RECEIPT,
            lot=lot,
            quantity=quantity,
            actor_id=actor_id,
            to_location_id=location_id,
            payload={
                "supplier": supplier,
                "unit_cost": str(unit_cost) if unit_cost is not None else None,
                "expiry_date": expiry.isoformat(),
            },
        )
        inventory = self.aggregator.recompute(product_id, location_id)

        logger.info(
            "lot_received",
            extra={
                "lot_id": str(lot.id),
                "lot_number": lot_number,
                "location_id": str(location_id),
                "quantity": quantity,
                "created": created,
                "transaction_id": str(txn.id),
            },
        )
        return MovementResult(
            transaction_id=txn.id,
            lot=lot.to_dto(),
            inventories=(inventory,),
        )

    def transfer(
        self,
        product_id: UUID,
        source_lot_id: UUID,
        from_location_id: UUID,
        to_location_id: UUID,
        quantity: int,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> MovementResult:
        """Consign ``quantity`` units of a lot from one location to another.

        The source moves the units from available to consigned; the
        destination lot (same product and lot number) is created or
        credited with total, available and consigned.
        """
        quantity = _validate_quantity(quantity)
        if from_location_id == to_location_id:
            raise ValidationError(
                "Source and destination locations must differ", field="to_location_id"
            )
        self._get_location(to_location_id)

        source = self._lock_lot(source_lot_id)
        self._check_lot_matches(source, product_id, from_location_id)
        if source.consignment_held:
            raise ValidationError(
                f"Lot {source.lot_number} holds consigned stock at its location "
                "and cannot be consigned onward",
                field="source_lot_id",
            )
        if source.quantity_available < quantity:
            raise InsufficientStockError(source.lot_number, quantity, source.quantity_available)

        destination = self._find_lot_for_update(
            product_id, source.lot_number, to_location_id, consignment_held=True
        )

        new_available = source.quantity_available - quantity
        self._apply(
            source,
            actor_id,
            quantity_available=new_available,
            quantity_consigned=source.quantity_consigned + quantity,
        )
        # Consigned stock is still live: only fully consumed lots deplete.
        if new_available == 0 and source.quantity_consumed == source.quantity_total:
            source.status = LotStatus.DEPLETED.value

        if destination is not None:
            self._apply(
                destination,
                actor_id,
                quantity_total=destination.quantity_total + quantity,
                quantity_available=destination.quantity_available + quantity,
                quantity_consigned=destination.quantity_consigned + quantity,
            )
            if destination.status_enum == LotStatus.DEPLETED:
                destination.status = LotStatus.ACTIVE.value
        else:
            destination = LotModel(
                product_id=product_id,
                location_id=to_location_id,
                lot_number=source.lot_number,
                expiry_date=source.expiry_date,
                quantity_total=quantity,
                quantity_available=quantity,
                quantity_consigned=quantity,
                quantity_consumed=0,
                quantity_damaged=0,
                quantity_returned=0,
                consignment_held=True,
                status=LotStatus.ACTIVE.value,
                received_at=self.clock.now(),
                supplier=source.supplier,
                unit_cost=source.unit_cost,
                created_by_id=actor_id,
            )
            self._check_invariant(destination)
            self._flush(source)
            self._insert_lot(destination)

        self._flush(source)

        txn = self._append_transaction(
            TransactionType.CONSIGNMENT_OUT,
            lot=source,
            quantity=quantity,
            actor_id=actor_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            destination_lot_id=destination.id,
            payload=payload or {},
        )
        inventories = (
            self.aggregator.recompute(product_id, from_location_id),
            self.aggregator.recompute(product_id, to_location_id),
        )

        logger.info(
            "lot_transferred",
            extra={
                "lot_id": str(source.id),
                "destination_lot_id": str(destination.id),
                "lot_number": source.lot_number,
                "from_location_id": str(from_location_id),
                "to_location_id": str(to_location_id),
                "quantity": quantity,
                "transaction_id": str(txn.id),
            },
        )
        return MovementResult(
            transaction_id=txn.id,
            lot=source.to_dto(),
            destination_lot=destination.to_dto(),
            inventories=inventories,
        )

    def consume(
        self,
        product_id: UUID,
        lot_id: UUID,
        location_id: UUID,
        quantity: int,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> MovementResult:
        """Consume ``quantity`` units of consigned stock at ``location_id``."""
        quantity = _validate_quantity(quantity)

        lot = self._lock_lot(lot_id)
        self._check_lot_matches(lot, product_id, location_id)
        if lot.quantity_available < quantity:
            raise InsufficientStockError(lot.lot_number, quantity, lot.quantity_available)
        if lot.quantity_consigned - quantity < 0:
            self._raise_consistency(
                lot,
                f"consuming {quantity} would drive consigned "
                f"({lot.quantity_consigned}) negative",
            )

        new_available = lot.quantity_available - quantity
        self._apply(
            lot,
            actor_id,
            quantity_available=new_available,
            quantity_consigned=lot.quantity_consigned - quantity,
            quantity_consumed=lot.quantity_consumed + quantity,
        )
        if new_available == 0:
            lot.status = LotStatus.DEPLETED.value

        self._flush(lot)

        txn = self._append_transaction(
            TransactionType.CONSUMPTION,
            lot=lot,
            quantity=quantity,
            actor_id=actor_id,
            from_location_id=location_id,
            payload=payload or {},
        )
        inventory = self.aggregator.recompute(product_id, location_id)

        logger.info(
            "lot_consumed",
            extra={
                "lot_id": str(lot.id),
                "lot_number": lot.lot_number,
                "location_id": str(location_id),
                "quantity": quantity,
                "transaction_id": str(txn.id),
            },
        )
        return MovementResult(
            transaction_id=txn.id,
            lot=lot.to_dto(),
            inventories=(inventory,),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_product(self, product_id: UUID) -> ProductModel:
        product = self.session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def _get_location(self, location_id: UUID) -> LocationModel:
        location = self.session.get(LocationModel, location_id)
        if location is None:
            raise LocationNotFoundError(location_id)
        return location

    def _lock_lot(self, lot_id: UUID) -> LotModel:
        lot = self.session.execute(
            select(LotModel).where(LotModel.id == lot_id).with_for_update()
        ).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(lot_id)
        return lot

    def _find_lot_for_update(
        self, product_id: UUID, lot_number: str, location_id: UUID, consignment_held: bool
    ) -> LotModel | None:
        return self.session.execute(
            select(LotModel)
            .where(
                LotModel.product_id == product_id,
                LotModel.lot_number == lot_number,
                LotModel.location_id == location_id,
                LotModel.consignment_held.is_(consignment_held),
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _check_lot_matches(self, lot: LotModel, product_id: UUID, location_id: UUID) -> None:
        if lot.location_id != location_id:
            raise LocationMismatchError(lot.id, location_id, lot.location_id)
        if lot.product_id != product_id:
            raise ValidationError(
                f"Lot {lot.lot_number} belongs to product {lot.product_id}, not {product_id}",
                field="product_id",
            )

    def _apply(self, lot: LotModel, actor_id: UUID, **quantities: int) -> None:
        """Set new partitions; restore the old ones and raise if they break the invariant."""
        previous = {name: getattr(lot, name) for name in quantities}
        for name, value in quantities.items():
            setattr(lot, name, value)
        violation = lot.partition_violation()
        if violation is not None:
            for name, value in previous.items():
                setattr(lot, name, value)
            self._raise_consistency(lot, violation)
        lot.updated_by_id = actor_id

    def _check_invariant(self, lot: LotModel) -> None:
        violation = lot.partition_violation()
        if violation is not None:
            self._raise_consistency(lot, violation)

    def _raise_consistency(self, lot: LotModel, detail: str) -> None:
        snapshot = {name: getattr(lot, name) for name in ("quantity_total", *PARTITIONS)}
        logger.critical(
            "consistency_violation",
            extra={
                "lot_id": str(lot.id),
                "lot_number": lot.lot_number,
                "detail": detail,
                "consignment_held": lot.consignment_held,
                **snapshot,
            },
        )
        raise ConsistencyError(lot.id, detail)

    def _flush(self, lot: LotModel) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "lot_version_conflict",
                extra={"lot_id": str(lot.id), "lot_number": lot.lot_number},
            )
            raise OptimisticLockError("Lot", lot.id) from exc

    def _insert_lot(self, lot: LotModel) -> None:
        """Insert a new lot inside a savepoint.

        FOR UPDATE locks nothing while the row does not exist yet, so two
        first receipts (or first transfers) can both get here.  The loser
        hits the unique key and gets a retryable OptimisticLockError; the
        re-run finds the winner's row and tops it up.
        """
        try:
            with self.session.begin_nested():
                self.session.add(lot)
        except IntegrityError as exc:
            logger.warning(
                "lot_insert_conflict",
                extra={
                    "lot_number": lot.lot_number,
                    "location_id": str(lot.location_id),
                    "consignment_held": lot.consignment_held,
                },
            )
            raise OptimisticLockError("Lot", f"{lot.lot_number} at {lot.location_id}") from exc

    def _append_transaction(
        self,
        transaction_type: TransactionType,
        lot: LotModel,
        quantity: int,
        actor_id: UUID,
        from_location_id: UUID | None = None,
        to_location_id: UUID | None = None,
        destination_lot_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> StockTransactionModel:
        txn = StockTransactionModel(
            transaction_type=transaction_type.value,
            product_id=lot.product_id,
            lot_id=lot.id,
            lot_number=lot.lot_number,
            quantity=quantity,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            destination_lot_id=destination_lot_id,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
            payload=payload or {},
        )
        self.session.add(txn)
        self.session.flush()
        return txn
