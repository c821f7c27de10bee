"""
Reconciliation engine types -- frozen inputs and findings.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from inventory_kernel.domain.dtos import ErpDocument
from inventory_kernel.domain.types import ErpDocType


class DocumentClass(str, Enum):
    KNOWN = "KNOWN"  # Matches a local sync tracker
    EXTERNAL = "EXTERNAL"  # Created outside the application
    PRE_EXISTING = "PRE_EXISTING"  # Dated before go-live, skipped
    IRRELEVANT = "IRRELEVANT"  # Touches no tracked product


@dataclass(frozen=True)
class KnownKeys:
    """ERP identifiers of locally-originated documents of one type."""

    doc_type: ErpDocType
    doc_entries: frozenset[int] = frozenset()
    doc_nums: frozenset[int] = frozenset()

    def matches(self, document: ErpDocument) -> bool:
        if document.doc_type != self.doc_type:
            return False
        if document.doc_entry in self.doc_entries:
            return True
        return document.doc_num is not None and document.doc_num in self.doc_nums


@dataclass(frozen=True)
class ClassifiedDocument:
    document: ErpDocument
    classification: DocumentClass
    # Lines restricted to tracked item codes (EXTERNAL only)
    relevant_lines: tuple = ()


@dataclass(frozen=True)
class ClassificationResult:
    doc_type: ErpDocType
    documents: tuple[ClassifiedDocument, ...] = field(default_factory=tuple)

    def of(self, classification: DocumentClass) -> tuple[ClassifiedDocument, ...]:
        return tuple(d for d in self.documents if d.classification == classification)

    @property
    def external(self) -> tuple[ClassifiedDocument, ...]:
        return self.of(DocumentClass.EXTERNAL)

    @property
    def checked(self) -> int:
        """Documents inside the window (pre-existing ones are not checked)."""
        return len(self.documents) - len(self.of(DocumentClass.PRE_EXISTING))

    def stats(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "known": len(self.of(DocumentClass.KNOWN)),
            "external": len(self.external),
            "pre_existing": len(self.of(DocumentClass.PRE_EXISTING)),
            "irrelevant": len(self.of(DocumentClass.IRRELEVANT)),
        }
