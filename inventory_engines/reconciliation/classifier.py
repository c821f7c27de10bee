"""
ExternalDocumentClassifier -- pure engine deciding which ERP documents were
created outside the application.

Architecture: inventory_engines -- pure calculation, zero I/O, zero DB
access.  The reconciliation service fetches ERP documents and local keys,
then hands them here.

Classification order (first match wins):
    1. PRE_EXISTING  doc date on a UTC day before the go-live day; never
                     persisted.  ERP DocDate carries no time of day, so the
                     whole go-live day is in scope.
    2. KNOWN         (type, doc entry) or (type, doc num) belongs to a local
                     document's sync tracker.
    3. IRRELEVANT    no line carries a tracked item code.
    4. EXTERNAL      everything else.

Duplicates of the same (type, doc entry) in one input collapse to one
classified document, so a paginated fetch that repeats a row cannot inflate
counts.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Iterable

from inventory_kernel.domain.dtos import ErpDocument, ReconciliationWindow
from inventory_kernel.domain.types import DateSource
from inventory_kernel.logging_config import get_logger

from inventory_engines.reconciliation.types import (
    ClassificationResult,
    ClassifiedDocument,
    DocumentClass,
    KnownKeys,
)

logger = get_logger("engines.reconciliation.classifier")


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _utc_day(value: date | datetime) -> date:
    return _as_datetime(value).astimezone(timezone.utc).date()


def resolve_window(
    go_live_date: datetime | None,
    now: datetime,
    from_date: date | datetime | None = None,
    to_date: date | datetime | None = None,
) -> ReconciliationWindow | None:
    """Scan window for a run, or None when no go-live date is configured.

    A custom range is clamped so it never starts before go-live and never
    ends after ``now``.
    """
    if go_live_date is None:
        return None

    if from_date is None and to_date is None:
        return ReconciliationWindow(go_live_date, now, DateSource.GO_LIVE_DATE)

    start = _as_datetime(from_date) if from_date is not None else go_live_date
    end = _as_datetime(to_date) if to_date is not None else now
    if isinstance(to_date, date) and not isinstance(to_date, datetime):
        # A date-only upper bound includes that whole day.
        end = datetime.combine(to_date, time.max, tzinfo=timezone.utc)
    return ReconciliationWindow(
        window_from=max(start, go_live_date),
        window_to=min(end, now),
        date_source=DateSource.CUSTOM_RANGE,
    )


class ExternalDocumentClassifier:
    """Pure engine.

    Usage:
        classifier = ExternalDocumentClassifier()
        result = classifier.classify(documents, known_keys, go_live, tracked_codes)
    """

    def classify(
        self,
        documents: Iterable[ErpDocument],
        known: KnownKeys,
        go_live_date: datetime,
        tracked_item_codes: frozenset[str],
    ) -> ClassificationResult:
        """Classify documents of ``known.doc_type``; other types are dropped."""
        doc_type = known.doc_type
        seen: set[int] = set()
        classified: list[ClassifiedDocument] = []

        for document in documents:
            if document.doc_type != doc_type or document.doc_entry in seen:
                continue
            seen.add(document.doc_entry)
            classified.append(self._classify_one(document, known, go_live_date, tracked_item_codes))

        result = ClassificationResult(doc_type=doc_type, documents=tuple(classified))
        logger.debug(
            "documents_classified",
            extra={"doc_type": doc_type.value, **result.stats()},
        )
        return result

    def _classify_one(
        self,
        document: ErpDocument,
        known: KnownKeys,
        go_live_date: datetime,
        tracked_item_codes: frozenset[str],
    ) -> ClassifiedDocument:
        if _utc_day(document.doc_date) < _utc_day(go_live_date):
            return ClassifiedDocument(document, DocumentClass.PRE_EXISTING)
        if known.matches(document):
            return ClassifiedDocument(document, DocumentClass.KNOWN)

        relevant = tuple(line for line in document.lines if line.item_code in tracked_item_codes)
        if not relevant:
            return ClassifiedDocument(document, DocumentClass.IRRELEVANT)
        return ClassifiedDocument(document, DocumentClass.EXTERNAL, relevant_lines=relevant)
