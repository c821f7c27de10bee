"""
inventory_services.reconciliation_service -- detect ERP documents created
outside the application.

Responsibility:
    Runs one reconciliation for one tenant: resolves the scan window from the
    go-live date, fetches each ERP document type, classifies documents with
    the pure ExternalDocumentClassifier and upserts the external ones for
    operator review.  Also serves run history, run status and the operator
    actions on external documents.

Architecture position:
    Services -- orchestration over inventory_engines.reconciliation, kernel
    selectors and the ERP client.  Opens its own session scopes on the
    tenant store: the STARTED run is committed before any ERP call, each
    document-type phase commits on its own, and the terminal status is
    written last.

Invariants enforced:
    - At most one STARTED run per tenant.  A STARTED run older than
      ``stale_run_minutes`` is resolved as FAILED (SYSTEM phase) before a
      new run starts; a fresh one makes the new run fail fast.
    - External documents are keyed by (doc type, doc entry); re-running
      over the same window inserts nothing new.
    - Reconciliation never mutates lots, inventory or sync trackers.

Failure modes:
    - ReconciliationInProgressError: a fresh STARTED run exists.
    - Per-phase exceptions are recorded on the run (PARTIAL / FAILED), not
      raised.  Anything failing outside a phase marks the run FAILED with a
      SYSTEM error and is re-raised.

Audit relevance:
    Every run leaves a row with window, counts, per-type stats and every
    error with its phase.  Operator status changes record reviewer and time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_config.schema import ReconciliationSettings
from inventory_engines.reconciliation import (
    ClassificationResult,
    ClassifiedDocument,
    ExternalDocumentClassifier,
    KnownKeys,
    resolve_window,
)
from inventory_erp.client import ErpClient
from inventory_kernel.db.tenancy import TenantContext
from inventory_kernel.domain.dtos import (
    ErpDocumentLine,
    ExternalDocumentSnapshot,
    ReconciliationRunSnapshot,
    ReconciliationStatus,
    ReconciliationWindow,
    RunError,
    TenantConfigSnapshot,
)
from inventory_kernel.domain.types import (
    DateSource,
    DetectionSource,
    ErpDocType,
    ExternalDocumentStatus,
    GoLiveSource,
    RunPhase,
    RunStatus,
    RunType,
)
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    ExternalSystemError,
    ReconciliationInProgressError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.external_document import (
    OPERATOR_STATUSES,
    ExternalDocumentModel,
)
from inventory_kernel.models.reconciliation_run import ReconciliationRunModel
from inventory_kernel.selectors.document_selector import DocumentSelector
from inventory_kernel.selectors.reconciliation_selector import ReconciliationSelector
from inventory_kernel.services.tenant_settings_service import TenantSettingsService

logger = get_logger("services.reconciliation")


def line_to_item(line: ErpDocumentLine) -> dict[str, Any]:
    """JSON form of an ERP line as stored on ExternalDocument.items."""
    return {
        "item_code": line.item_code,
        "quantity": str(line.quantity),
        "batches": [
            {
                "batch_number": number,
                "quantity": str(line.batch_quantities.get(number, line.quantity)),
                "expiry_date": (
                    line.batch_expiry[number].isoformat() if number in line.batch_expiry else None
                ),
            }
            for number in line.batch_numbers
        ],
        "warehouse_code": line.warehouse_code,
        "from_warehouse_code": line.from_warehouse_code,
        "bin_abs_entry": line.bin_abs_entry,
        "price": str(line.price) if line.price is not None else None,
    }


@dataclass
class _RunProgress:
    """Mutable accumulator for one run; written to the run row at the end."""

    errors: list[RunError] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    documents_checked: int = 0
    found: set[tuple[str, int]] = field(default_factory=set)
    new: int = 0
    failed_phases: int = 0


class ReconciliationService:
    """
    Contract:
        Stateless apart from its collaborators; every method takes the
        TenantContext of the store to act on.

    Non-goals:
        - Does NOT import external documents (ExternalImportService).
        - Does NOT schedule itself (inventory_services.nightly).
    """

    def __init__(
        self,
        erp: ErpClient | None,
        settings: ReconciliationSettings | None = None,
        classifier: ExternalDocumentClassifier | None = None,
    ):
        self.erp = erp
        self.settings = settings or ReconciliationSettings()
        self.classifier = classifier or ExternalDocumentClassifier()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        tenant_ctx: TenantContext,
        run_type: RunType = RunType.MANUAL,
        triggered_by_id: UUID | None = None,
        from_date: date | datetime | None = None,
        to_date: date | datetime | None = None,
        document_types: Sequence[ErpDocType] | None = None,
    ) -> ReconciliationRunSnapshot:
        doc_types = tuple(document_types or self.settings.document_types)
        with tenant_ctx.session_scope() as session:
            run, window = self._start_run(
                session, tenant_ctx, run_type, triggered_by_id, from_date, to_date, doc_types
            )
            run_id = run.id

        with LogContext.bind(tenant_id=tenant_ctx.tenant_id, run_id=run_id):
            logger.info(
                "reconciliation_started",
                extra={
                    "run_type": run_type.value,
                    "date_source": window.date_source.value if window else DateSource.NONE.value,
                    "document_types": [t.value for t in doc_types],
                },
            )
            progress = _RunProgress()
            try:
                status = self._execute(tenant_ctx, run_type, run_id, window, doc_types, progress)
            except Exception as exc:
                progress.errors.append(
                    RunError(
                        timestamp=tenant_ctx.clock.now(),
                        phase=RunPhase.SYSTEM.value,
                        message=str(exc),
                        details={"exc_type": type(exc).__name__},
                    )
                )
                self._finish(tenant_ctx, run_id, RunStatus.FAILED, progress)
                logger.exception("reconciliation_aborted")
                raise

            snapshot = self._finish(tenant_ctx, run_id, status, progress)
            log = logger.info if status == RunStatus.SUCCEEDED else logger.warning
            log(
                "reconciliation_completed",
                extra={
                    "run_status": status.value,
                    "documents_checked": snapshot.documents_checked,
                    "external_docs_found": snapshot.external_docs_found,
                    "external_docs_new": snapshot.external_docs_new,
                    "error_count": len(snapshot.errors),
                },
            )
            return snapshot

    def _start_run(
        self,
        session: Session,
        tenant_ctx: TenantContext,
        run_type: RunType,
        triggered_by_id: UUID | None,
        from_date: date | datetime | None,
        to_date: date | datetime | None,
        doc_types: tuple[ErpDocType, ...],
    ) -> tuple[ReconciliationRunModel, ReconciliationWindow | None]:
        now = tenant_ctx.clock.now()
        settings_row = TenantSettingsService(session, tenant_ctx.clock).lock_for_run(
            tenant_ctx.tenant_id
        )

        stale_before = now - timedelta(minutes=self.settings.stale_run_minutes)
        for started in ReconciliationSelector(session).started_runs(tenant_ctx.tenant_id):
            if started.started_at > stale_before:
                raise ReconciliationInProgressError(tenant_ctx.tenant_id, started.id)
            started.status = RunStatus.FAILED.value
            started.completed_at = now
            started.errors = list(started.errors or ()) + [
                RunError(
                    timestamp=now,
                    phase=RunPhase.SYSTEM.value,
                    message=(
                        f"Run abandoned: still STARTED after "
                        f"{self.settings.stale_run_minutes} minutes"
                    ),
                ).to_dict()
            ]
            logger.warning(
                "reconciliation_stale_run_failed",
                extra={"stale_run_id": str(started.id), "started_at": started.started_at},
            )

        window = resolve_window(settings_row.go_live_date, now, from_date, to_date)
        run = ReconciliationRunModel(
            tenant_id=tenant_ctx.tenant_id,
            run_type=run_type.value,
            status=RunStatus.STARTED.value,
            started_at=now,
            window_from=window.window_from if window else None,
            window_to=window.window_to if window else None,
            date_source=window.date_source.value if window else DateSource.NONE.value,
            document_types=[t.value for t in doc_types],
            stats={},
            errors=[],
            triggered_by_id=triggered_by_id,
        )
        session.add(run)
        session.flush()
        return run, window

    def _execute(
        self,
        tenant_ctx: TenantContext,
        run_type: RunType,
        run_id: UUID,
        window: ReconciliationWindow | None,
        doc_types: tuple[ErpDocType, ...],
        progress: _RunProgress,
    ) -> RunStatus:
        clock = tenant_ctx.clock

        if window is None:
            progress.errors.append(
                RunError(clock.now(), RunPhase.SETUP.value, "go-live date not configured")
            )
            return RunStatus.NOT_CONFIGURED

        with tenant_ctx.session_scope() as session:
            tracked = ReconciliationSelector(session).tracked_item_codes()
        if not tracked:
            logger.info("reconciliation_no_tracked_products")
            return RunStatus.SUCCEEDED

        if self.erp is None:
            progress.errors.append(
                RunError(clock.now(), RunPhase.CONNECTION.value, "ERP client not configured")
            )
            return RunStatus.FAILED
        try:
            self.erp.verify_connection()
        except ExternalSystemError as exc:
            progress.errors.append(
                RunError(
                    clock.now(),
                    RunPhase.CONNECTION.value,
                    str(exc),
                    {"status_code": exc.status_code, "retryable": exc.retryable},
                )
            )
            return RunStatus.FAILED

        detected_by = (
            DetectionSource.NIGHTLY_JOB if run_type == RunType.NIGHTLY else DetectionSource.ON_DEMAND
        )
        for doc_type in doc_types:
            try:
                self._run_phase(tenant_ctx, run_id, doc_type, window, tracked, detected_by, progress)
            except Exception as exc:
                progress.failed_phases += 1
                progress.errors.append(
                    RunError(
                        clock.now(),
                        doc_type.value,
                        str(exc),
                        {"exc_type": type(exc).__name__},
                    )
                )
                logger.warning(
                    "reconciliation_phase_failed",
                    extra={"doc_type": doc_type.value, "error": str(exc)},
                    exc_info=True,
                )

        if not progress.errors:
            return RunStatus.SUCCEEDED
        if progress.failed_phases == len(doc_types):
            return RunStatus.FAILED
        return RunStatus.PARTIAL

    def _run_phase(
        self,
        tenant_ctx: TenantContext,
        run_id: UUID,
        doc_type: ErpDocType,
        window: ReconciliationWindow,
        tracked: frozenset[str],
        detected_by: DetectionSource,
        progress: _RunProgress,
    ) -> None:
        documents = self.erp.get_documents_since(doc_type, window.window_from, window.window_to)
        # The ERP filters by day; trim to the exact window.
        documents = [d for d in documents if d.doc_date <= window.window_to]

        with tenant_ctx.session_scope() as session:
            entries, nums = DocumentSelector(session).known_erp_keys(doc_type)
            result = self.classifier.classify(
                documents,
                KnownKeys(doc_type, entries, nums),
                window.window_from,
                tracked,
            )
            new = self._upsert_external(
                session, tenant_ctx, run_id, result, detected_by
            )

        stats = result.stats()
        stats["new"] = new
        progress.stats[doc_type.value] = stats
        progress.documents_checked += result.checked
        progress.found.update((doc_type.value, d.document.doc_entry) for d in result.external)
        progress.new += new

    def _upsert_external(
        self,
        session: Session,
        tenant_ctx: TenantContext,
        run_id: UUID,
        result: ClassificationResult,
        detected_by: DetectionSource,
    ) -> int:
        new = 0
        for classified in result.external:
            existing = self._find_external(session, classified)
            if existing is None:
                try:
                    with session.begin_nested():
                        session.add(
                            self._new_external(classified, tenant_ctx, run_id, detected_by)
                        )
                    new += 1
                    continue
                except IntegrityError:
                    # Inserted by a concurrent run between the lookup and the insert.
                    existing = self._find_external(session, classified)
            existing.last_seen_run_id = run_id
            if existing.status_enum == ExternalDocumentStatus.PENDING_REVIEW:
                existing.items = [line_to_item(line) for line in classified.relevant_lines]
                existing.raw_payload = dict(classified.document.raw)
        session.flush()
        return new

    @staticmethod
    def _find_external(
        session: Session, classified: ClassifiedDocument
    ) -> ExternalDocumentModel | None:
        return session.execute(
            select(ExternalDocumentModel).where(
                ExternalDocumentModel.erp_doc_type == classified.document.doc_type.value,
                ExternalDocumentModel.erp_doc_entry == classified.document.doc_entry,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _new_external(
        classified: ClassifiedDocument,
        tenant_ctx: TenantContext,
        run_id: UUID,
        detected_by: DetectionSource,
    ) -> ExternalDocumentModel:
        doc = classified.document
        return ExternalDocumentModel(
            erp_doc_type=doc.doc_type.value,
            erp_doc_entry=doc.doc_entry,
            erp_doc_num=doc.doc_num,
            doc_date=doc.doc_date,
            card_code=doc.card_code,
            card_name=doc.card_name,
            from_warehouse_code=doc.from_warehouse_code,
            to_warehouse_code=doc.to_warehouse_code,
            items=[line_to_item(line) for line in classified.relevant_lines],
            raw_payload=dict(doc.raw),
            detected_at=tenant_ctx.clock.now(),
            detected_by=detected_by.value,
            reconciliation_run_id=run_id,
            last_seen_run_id=run_id,
            status=ExternalDocumentStatus.PENDING_REVIEW.value,
        )

    def _finish(
        self,
        tenant_ctx: TenantContext,
        run_id: UUID,
        status: RunStatus,
        progress: _RunProgress,
    ) -> ReconciliationRunSnapshot:
        with tenant_ctx.session_scope() as session:
            run = session.get(ReconciliationRunModel, run_id, with_for_update=True)
            run.status = status.value
            run.completed_at = tenant_ctx.clock.now()
            run.documents_checked = progress.documents_checked
            run.external_docs_found = len(progress.found)
            run.external_docs_new = progress.new
            run.stats = dict(progress.stats)
            run.errors = [e.to_dict() for e in progress.errors]
            session.flush()
            return run.to_dto()

    # ------------------------------------------------------------------
    # Status and history
    # ------------------------------------------------------------------

    def get_status(self, tenant_ctx: TenantContext) -> ReconciliationStatus:
        with tenant_ctx.session_scope() as session:
            selector = ReconciliationSelector(session)
            last_run = selector.latest_run(tenant_ctx.tenant_id)
            config = TenantSettingsService(session, tenant_ctx.clock).get_config(
                tenant_ctx.tenant_id
            )
            return ReconciliationStatus(
                tenant_id=tenant_ctx.tenant_id,
                last_run=last_run,
                in_progress=bool(selector.started_runs(tenant_ctx.tenant_id)),
                pending_review=selector.count_external_documents(
                    ExternalDocumentStatus.PENDING_REVIEW
                ),
                go_live_date=config.go_live_date,
            )

    def get_history(
        self, tenant_ctx: TenantContext, limit: int = 20, offset: int = 0
    ) -> list[ReconciliationRunSnapshot]:
        with tenant_ctx.session_scope() as session:
            return ReconciliationSelector(session).history(tenant_ctx.tenant_id, limit, offset)

    # ------------------------------------------------------------------
    # External documents
    # ------------------------------------------------------------------

    def list_external_documents(
        self,
        tenant_ctx: TenantContext,
        status: ExternalDocumentStatus | None = None,
        doc_type: ErpDocType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExternalDocumentSnapshot]:
        with tenant_ctx.session_scope() as session:
            return ReconciliationSelector(session).list_external_documents(
                status=status, doc_type=doc_type, limit=limit, offset=offset
            )

    def update_external_document_status(
        self,
        tenant_ctx: TenantContext,
        document_id: UUID,
        status: ExternalDocumentStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> ExternalDocumentSnapshot:
        try:
            status = ExternalDocumentStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown status {status!r}", field="status") from exc
        if status not in OPERATOR_STATUSES:
            raise ValidationError(
                f"Status {status.value} cannot be set by an operator", field="status"
            )
        with tenant_ctx.session_scope() as session:
            doc = session.get(ExternalDocumentModel, document_id, with_for_update=True)
            if doc is None:
                raise DocumentNotFoundError("ExternalDocument", document_id)
            previous = doc.status
            doc.status = status.value
            doc.reviewed_by_id = actor_id
            doc.reviewed_at = tenant_ctx.clock.now()
            if notes is not None:
                doc.notes = notes
            session.flush()
            logger.info(
                "external_document_reviewed",
                extra={
                    "external_document_id": str(document_id),
                    "from_status": previous,
                    "to_status": status.value,
                },
            )
            return doc.to_dto()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self, tenant_ctx: TenantContext) -> TenantConfigSnapshot:
        with tenant_ctx.session_scope() as session:
            return TenantSettingsService(session, tenant_ctx.clock).get_config(
                tenant_ctx.tenant_id
            )

    def set_go_live_date(
        self,
        tenant_ctx: TenantContext,
        go_live_date: date | datetime,
        actor_id: UUID | None,
        source: GoLiveSource = GoLiveSource.MANUAL,
    ) -> TenantConfigSnapshot:
        with tenant_ctx.session_scope() as session:
            return TenantSettingsService(session, tenant_ctx.clock).set_go_live_date(
                tenant_ctx.tenant_id, go_live_date, actor_id, source
            )
