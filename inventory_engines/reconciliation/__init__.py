"""
Reconciliation -- pure classification of ERP documents against local records.
"""

from inventory_engines.reconciliation.classifier import (
    ExternalDocumentClassifier,
    resolve_window,
)
from inventory_engines.reconciliation.types import (
    ClassificationResult,
    ClassifiedDocument,
    DocumentClass,
    KnownKeys,
)

__all__ = [
    "ClassificationResult",
    "ClassifiedDocument",
    "DocumentClass",
    "ExternalDocumentClassifier",
    "KnownKeys",
    "resolve_window",
]
