"""
SyncTrackerService -- ERP sync state and the retry lock.

Responsibility:
    Creates the tracker attached to every outbound document, records the
    outcome of the first push, and drives the retry lifecycle
    FAILED -> RETRYING -> (SYNCED | FAILED).

Architecture position:
    Kernel > Services -- imperative shell.  Called by the document services
    (creation) and by inventory_services.sync_service (push and retry).

Invariants enforced:
    - Claiming a retry is one compare-and-set UPDATE.  Of any number of
      concurrent claims on the same tracker exactly one matches the WHERE
      clause; the rest update zero rows.
    - A claim carries a lease.  A RETRYING tracker whose lease expired can
      be claimed again, so a crashed worker never holds the lock forever.
    - Completion is also compare-and-set on (status, lease): a worker whose
      lease was taken over cannot overwrite the new holder's outcome.
    - MAX_SYNC_RETRIES (5) bounds completed retry attempts.

Failure modes:
    - DocumentNotFoundError: tracker id unknown.
    - SyncRetryNotAllowedError: outcome recorded from the wrong state, or a
      completion after losing the lease.

Audit relevance:
    Every push outcome, claim and completion is logged with tracker id,
    ERP document type and retry count.  ERP error messages are stored
    verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ErpDocumentRef, SyncOutcome, SyncTrackerSnapshot
from inventory_kernel.domain.types import ErpDocType, SyncOwnerKind, SyncStatus
from inventory_kernel.exceptions import DocumentNotFoundError, SyncRetryNotAllowedError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.sync_tracker import SyncTrackerModel
from inventory_kernel.services.base import BaseService

logger = get_logger("services.sync_tracker")

MAX_SYNC_RETRIES = 5
DEFAULT_LEASE_SECONDS = 300


@dataclass(frozen=True)
class RetryClaim:
    """Proof of a successful claim; required to complete the retry."""

    tracker_id: UUID
    lease_expires_at: datetime


class SyncTrackerService(BaseService[SyncTrackerModel]):
    """
    Contract:
        All tracker mutations go through this service.  Claim and
        completion are single UPDATE statements; the caller must commit the
        claim before talking to the ERP so other workers see it.

    Non-goals:
        - Does NOT call the ERP (inventory_services.sync_service does).
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_retries: int = MAX_SYNC_RETRIES,
    ):
        super().__init__(session, clock)
        self.max_retries = max_retries

    def create(
        self,
        owner_kind: SyncOwnerKind,
        owner_id: UUID,
        doc_type: ErpDocType,
        synced_ref: ErpDocumentRef | None = None,
    ) -> SyncTrackerModel:
        """New tracker for a document.  ``synced_ref`` marks an ERP-originated document."""
        tracker = SyncTrackerModel(
            owner_kind=owner_kind.value,
            owner_id=owner_id,
            erp_doc_type=doc_type.value,
            status=SyncStatus.PENDING.value,
            pushed=False,
            retry_count=0,
            retrying=False,
        )
        if synced_ref is not None:
            tracker.status = SyncStatus.SYNCED.value
            tracker.pushed = True
            tracker.erp_doc_entry = synced_ref.doc_entry
            tracker.erp_doc_num = synced_ref.doc_num
            tracker.sync_date = self.clock.now()
        self.session.add(tracker)
        self.session.flush()
        return tracker

    def get(self, tracker_id: UUID) -> SyncTrackerModel:
        tracker = self.session.get(SyncTrackerModel, tracker_id, populate_existing=True)
        if tracker is None:
            raise DocumentNotFoundError("SyncTracker", tracker_id)
        return tracker

    # ------------------------------------------------------------------
    # First push
    # ------------------------------------------------------------------

    def record_push_outcome(self, tracker_id: UUID, outcome: SyncOutcome) -> SyncTrackerSnapshot:
        """Record the result of the first push.  PENDING -> SYNCED | FAILED."""
        tracker = self.get(tracker_id)
        if tracker.status_enum != SyncStatus.PENDING:
            raise SyncRetryNotAllowedError(
                tracker_id, f"first push recorded on a {tracker.status} tracker"
            )
        self._apply_outcome(tracker, outcome)
        self.session.flush()
        logger.info(
            "sync_push_recorded",
            extra={
                "tracker_id": str(tracker_id),
                "erp_doc_type": tracker.erp_doc_type,
                "sync_status": tracker.status,
                "retryable": outcome.retryable,
            },
        )
        return tracker.to_dto()

    def record_push_success(self, tracker_id: UUID, ref: ErpDocumentRef) -> SyncTrackerSnapshot:
        return self.record_push_outcome(tracker_id, SyncOutcome.success(ref))

    def record_push_failure(
        self, tracker_id: UUID, error: str, retryable: bool = True
    ) -> SyncTrackerSnapshot:
        return self.record_push_outcome(tracker_id, SyncOutcome.failure(error, retryable))

    # ------------------------------------------------------------------
    # Retry lifecycle
    # ------------------------------------------------------------------

    def _claimable(self, now: datetime):
        return and_(
            SyncTrackerModel.retry_count < self.max_retries,
            or_(
                and_(
                    SyncTrackerModel.status == SyncStatus.FAILED.value,
                    SyncTrackerModel.retrying.is_(False),
                ),
                and_(
                    SyncTrackerModel.status == SyncStatus.RETRYING.value,
                    SyncTrackerModel.retry_lease_expires_at < now,
                ),
            ),
        )

    def list_retryable(self, limit: int | None = None) -> Sequence[SyncTrackerModel]:
        """Trackers a sweep may try to claim, oldest failure first."""
        stmt = (
            select(SyncTrackerModel)
            .where(self._claimable(self.clock.now()))
            .order_by(SyncTrackerModel.last_attempt_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.execute(stmt).scalars().all()

    def claim_for_retry(
        self, tracker_id: UUID, lease_seconds: int = DEFAULT_LEASE_SECONDS
    ) -> RetryClaim | None:
        """Atomically take the retry lock.  Returns None when the claim was lost."""
        now = self.clock.now()
        lease = now + timedelta(seconds=lease_seconds)
        result = self.session.execute(
            update(SyncTrackerModel)
            .where(SyncTrackerModel.id == tracker_id, self._claimable(now))
            .values(
                status=SyncStatus.RETRYING.value,
                retrying=True,
                retry_lease_expires_at=lease,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("sync_retry_claim_lost", extra={"tracker_id": str(tracker_id)})
            return None

        logger.info(
            "sync_retry_claimed",
            extra={"tracker_id": str(tracker_id), "lease_expires_at": lease},
        )
        return RetryClaim(tracker_id=tracker_id, lease_expires_at=lease)

    def complete_retry(self, claim: RetryClaim, outcome: SyncOutcome) -> SyncTrackerSnapshot:
        """Release the lock and record the outcome.  RETRYING -> SYNCED | FAILED."""
        now = self.clock.now()
        values = {
            "retrying": False,
            "retry_lease_expires_at": None,
            "retry_count": SyncTrackerModel.retry_count + 1,
            "last_attempt_at": now,
        }
        if outcome.accepted:
            values.update(
                status=SyncStatus.SYNCED.value,
                pushed=True,
                erp_doc_entry=outcome.ref.doc_entry,
                erp_doc_num=outcome.ref.doc_num,
                sync_date=now,
                error=None,
            )
        else:
            values.update(status=SyncStatus.FAILED.value, error=outcome.error)

        result = self.session.execute(
            update(SyncTrackerModel)
            .where(
                SyncTrackerModel.id == claim.tracker_id,
                SyncTrackerModel.status == SyncStatus.RETRYING.value,
                SyncTrackerModel.retry_lease_expires_at == claim.lease_expires_at,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SyncRetryNotAllowedError(claim.tracker_id, "retry lease was lost before completion")

        tracker = self.get(claim.tracker_id)
        logger.info(
            "sync_retry_completed",
            extra={
                "tracker_id": str(claim.tracker_id),
                "sync_status": tracker.status,
                "retry_count": tracker.retry_count,
                "erp_doc_entry": tracker.erp_doc_entry,
            },
        )
        return tracker.to_dto()

    def _apply_outcome(self, tracker: SyncTrackerModel, outcome: SyncOutcome) -> None:
        if outcome.accepted:
            tracker.status = SyncStatus.SYNCED.value
            tracker.pushed = True
            tracker.erp_doc_entry = outcome.ref.doc_entry
            tracker.erp_doc_num = outcome.ref.doc_num
            tracker.sync_date = self.clock.now()
            tracker.error = None
        else:
            tracker.status = SyncStatus.FAILED.value
            tracker.error = outcome.error
        tracker.retrying = False
        tracker.retry_lease_expires_at = None
        tracker.last_attempt_at = self.clock.now()
