"""
ConsignmentService -- bulk transfers with an in-transit phase.

Responsibility:
    ``create_consignment`` applies one LotLedger.transfer per item and
    records the consignment EN_TRANSITO with a PENDING sync tracker for the
    ERP stock transfer.  ``confirm_consignment`` records the quantities the
    receiving site counted and moves the consignment to RECIBIDO.

Architecture position:
    Kernel > Services -- imperative shell over LotLedger.

Invariants enforced:
    - EN_TRANSITO -> RECIBIDO is the only transition.
    - Confirmation never changes lot quantities.  Differences between sent
      and received are stored per item as ``discrepancy`` for the operator.

Failure modes:
    - ValidationError: empty item list, negative or unknown received items.
    - Any LotLedger error for an item (the whole consignment rolls back
      with the caller's transaction).
    - DocumentNotFoundError, InvalidConsignmentTransitionError.
"""

from __future__ import annotations

from typing import Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ConsignmentSnapshot, TransferItemInput
from inventory_kernel.domain.types import ConsignmentStatus, ErpDocType, SyncOwnerKind
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    InvalidConsignmentTransitionError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.consignment import (
    VALID_TRANSITIONS,
    ConsignmentItemModel,
    ConsignmentModel,
)
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lot_ledger import LotLedger
from inventory_kernel.services.sync_tracker_service import SyncTrackerService

logger = get_logger("services.consignment")


class ConsignmentService(BaseService[ConsignmentModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LotLedger | None = None,
        trackers: SyncTrackerService | None = None,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or LotLedger(session, self.clock)
        self.trackers = trackers or SyncTrackerService(session, self.clock)

    def create_consignment(
        self,
        from_location_id: UUID,
        to_location_id: UUID,
        items: Sequence[TransferItemInput],
        actor_id: UUID,
        notes: str | None = None,
    ) -> ConsignmentSnapshot:
        if not items:
            raise ValidationError("A consignment needs at least one item", field="items")

        consignment_id = uuid4()
        tracker = self.trackers.create(
            SyncOwnerKind.CONSIGNMENT, consignment_id, ErpDocType.STOCK_TRANSFER
        )
        consignment = ConsignmentModel(
            id=consignment_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            status=ConsignmentStatus.EN_TRANSITO.value,
            notes=notes,
            sent_at=self.clock.now(),
            sync_tracker_id=tracker.id,
            created_by_id=actor_id,
        )
        consignment.sync_tracker = tracker

        for line_number, item in enumerate(items, start=1):
            result = self.ledger.transfer(
                product_id=item.product_id,
                source_lot_id=item.lot_id,
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                quantity=item.quantity,
                actor_id=actor_id,
                payload={"consignment_id": str(consignment_id)},
            )
            consignment.items.append(
                ConsignmentItemModel(
                    line_number=line_number,
                    product_id=item.product_id,
                    source_lot_id=result.lot.id,
                    destination_lot_id=result.destination_lot.id,
                    lot_number=result.lot.lot_number,
                    quantity_sent=item.quantity,
                    transaction_id=result.transaction_id,
                )
            )

        self.session.add(consignment)
        self.session.flush()

        logger.info(
            "consignment_created",
            extra={
                "consignment_id": str(consignment_id),
                "from_location_id": str(from_location_id),
                "to_location_id": str(to_location_id),
                "item_count": len(items),
                "total_quantity": sum(i.quantity for i in items),
            },
        )
        return consignment.to_dto(self.clock.now())

    def confirm_consignment(
        self,
        consignment_id: UUID,
        received: Mapping[UUID, int] | None,
        actor_id: UUID,
        notes: str | None = None,
    ) -> ConsignmentSnapshot:
        """Record received quantities.  Items absent from ``received`` count as fully received."""
        consignment = self._lock(consignment_id)
        target = ConsignmentStatus.RECIBIDO
        if target not in VALID_TRANSITIONS[consignment.status_enum]:
            raise InvalidConsignmentTransitionError(
                consignment_id, consignment.status, target.value
            )

        received = dict(received or {})
        item_ids = {item.id for item in consignment.items}
        unknown = set(received) - item_ids
        if unknown:
            raise ValidationError(
                f"Items not in consignment {consignment_id}: {sorted(str(u) for u in unknown)}",
                field="received",
            )

        for item in consignment.items:
            quantity = received.get(item.id, item.quantity_sent)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                raise ValidationError(
                    f"Received quantity for item {item.id} must be a non-negative integer",
                    field="received",
                )
            item.quantity_received = quantity
            item.discrepancy = item.quantity_sent - quantity

        consignment.status = target.value
        consignment.confirmed_at = self.clock.now()
        consignment.confirmed_by_id = actor_id
        consignment.confirmation_notes = notes
        consignment.updated_by_id = actor_id
        self.session.flush()

        discrepancies = [i for i in consignment.items if i.discrepancy]
        log = logger.warning if discrepancies else logger.info
        log(
            "consignment_confirmed",
            extra={
                "consignment_id": str(consignment_id),
                "discrepancy_count": len(discrepancies),
                "discrepancies": {str(i.id): i.discrepancy for i in discrepancies},
            },
        )
        return consignment.to_dto(self.clock.now())

    def _lock(self, consignment_id: UUID) -> ConsignmentModel:
        consignment = self.session.execute(
            select(ConsignmentModel)
            .where(ConsignmentModel.id == consignment_id)
            .with_for_update()
        ).scalar_one_or_none()
        if consignment is None:
            raise DocumentNotFoundError("Consignment", consignment_id)
        return consignment
