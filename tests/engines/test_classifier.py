"""
Tests for ExternalDocumentClassifier and resolve_window.

Pure engine: no store, no ERP.  Documents come from the make_erp_document
factory in conftest.
"""

from datetime import date, datetime, timezone

import pytest

from inventory_engines.reconciliation import (
    DocumentClass,
    ExternalDocumentClassifier,
    KnownKeys,
    resolve_window,
)
from inventory_kernel.domain.types import DateSource, ErpDocType

from tests.conftest import GUIDEWIRE_CODE, STENT_CODE

GO_LIVE = datetime(2026, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
TRACKED = frozenset({GUIDEWIRE_CODE, STENT_CODE})


@pytest.fixture
def classifier() -> ExternalDocumentClassifier:
    return ExternalDocumentClassifier()


def _known(**kwargs) -> KnownKeys:
    return KnownKeys(doc_type=ErpDocType.DELIVERY_NOTE, **kwargs)


class TestClassificationOrder:
    def test_untracked_document_is_external(self, classifier, make_erp_document):
        result = classifier.classify([make_erp_document(1)], _known(), GO_LIVE, TRACKED)
        assert [d.classification for d in result.documents] == [DocumentClass.EXTERNAL]
        assert result.external[0].relevant_lines[0].item_code == GUIDEWIRE_CODE

    def test_before_go_live_is_pre_existing(self, classifier, make_erp_document):
        old = make_erp_document(1, doc_date=datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc))
        result = classifier.classify([old], _known(doc_entries=frozenset({1})), GO_LIVE, TRACKED)
        # pre-existing wins over a known key
        assert result.documents[0].classification == DocumentClass.PRE_EXISTING
        assert result.checked == 0

    def test_date_only_go_live_day_is_in_window(self, classifier, make_erp_document):
        same_day = make_erp_document(1, doc_date=date(2026, 1, 1))
        result = classifier.classify([same_day], _known(), GO_LIVE, TRACKED)
        assert result.documents[0].classification == DocumentClass.EXTERNAL

    def test_midday_go_live_keeps_that_whole_day(self, classifier, make_erp_document):
        go_live = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
        documents = [
            make_erp_document(1, doc_date=datetime(2026, 1, 5, tzinfo=timezone.utc)),
            make_erp_document(2, doc_date=datetime(2026, 1, 4, tzinfo=timezone.utc)),
        ]
        result = classifier.classify(documents, _known(), go_live, TRACKED)
        assert [d.classification for d in result.documents] == [
            DocumentClass.EXTERNAL,
            DocumentClass.PRE_EXISTING,
        ]

    def test_known_by_doc_entry(self, classifier, make_erp_document):
        result = classifier.classify(
            [make_erp_document(7)], _known(doc_entries=frozenset({7})), GO_LIVE, TRACKED
        )
        assert result.documents[0].classification == DocumentClass.KNOWN

    def test_known_by_doc_num(self, classifier, make_erp_document):
        result = classifier.classify(
            [make_erp_document(7, doc_num=901)], _known(doc_nums=frozenset({901})), GO_LIVE, TRACKED
        )
        assert result.documents[0].classification == DocumentClass.KNOWN

    def test_known_wins_over_irrelevant(self, classifier, make_erp_document):
        doc = make_erp_document(7, item_codes=("OTHER",))
        result = classifier.classify([doc], _known(doc_entries=frozenset({7})), GO_LIVE, TRACKED)
        assert result.documents[0].classification == DocumentClass.KNOWN

    def test_untracked_items_are_irrelevant(self, classifier, make_erp_document):
        doc = make_erp_document(7, item_codes=("OTHER", "PAPER"))
        result = classifier.classify([doc], _known(), GO_LIVE, TRACKED)
        assert result.documents[0].classification == DocumentClass.IRRELEVANT

    def test_relevant_lines_exclude_untracked(self, classifier, make_erp_document):
        doc = make_erp_document(7, item_codes=("OTHER", STENT_CODE))
        result = classifier.classify([doc], _known(), GO_LIVE, TRACKED)
        assert [line.item_code for line in result.external[0].relevant_lines] == [STENT_CODE]

    def test_known_keys_are_scoped_by_doc_type(self, make_erp_document):
        doc = make_erp_document(7)
        keys = KnownKeys(doc_type=ErpDocType.STOCK_TRANSFER, doc_entries=frozenset({7}))
        assert not keys.matches(doc)


class TestClassifyInput:
    def test_duplicates_collapse(self, classifier, make_erp_document):
        doc = make_erp_document(3)
        result = classifier.classify([doc, doc, make_erp_document(4)], _known(), GO_LIVE, TRACKED)
        assert len(result.documents) == 2
        assert len(result.external) == 2

    def test_other_doc_types_dropped(self, classifier, make_erp_document):
        transfer = make_erp_document(3, doc_type=ErpDocType.STOCK_TRANSFER)
        result = classifier.classify([transfer], _known(), GO_LIVE, TRACKED)
        assert result.documents == ()

    def test_stats(self, classifier, make_erp_document):
        docs = [
            make_erp_document(1),
            make_erp_document(2, doc_date=datetime(2025, 6, 1, tzinfo=timezone.utc)),
            make_erp_document(3, item_codes=("OTHER",)),
            make_erp_document(4),
        ]
        result = classifier.classify(docs, _known(doc_entries=frozenset({4})), GO_LIVE, TRACKED)
        assert result.stats() == {
            "checked": 3,
            "known": 1,
            "external": 1,
            "pre_existing": 1,
            "irrelevant": 1,
        }


class TestResolveWindow:
    def test_no_go_live(self):
        assert resolve_window(None, NOW) is None

    def test_default_window(self):
        window = resolve_window(GO_LIVE, NOW)
        assert window.window_from == GO_LIVE
        assert window.window_to == NOW
        assert window.date_source == DateSource.GO_LIVE_DATE

    def test_custom_range_clamped_to_go_live_and_now(self):
        window = resolve_window(
            GO_LIVE,
            NOW,
            from_date=datetime(2025, 6, 1, tzinfo=timezone.utc),
            to_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        )
        assert window.window_from == GO_LIVE
        assert window.window_to == NOW
        assert window.date_source == DateSource.CUSTOM_RANGE

    def test_date_only_upper_bound_covers_the_day(self):
        window = resolve_window(GO_LIVE, NOW, from_date=date(2026, 1, 5), to_date=date(2026, 1, 10))
        assert window.window_from == datetime(2026, 1, 5, tzinfo=timezone.utc)
        assert window.window_to.date() == date(2026, 1, 10)
        assert window.window_to.hour == 23

    def test_naive_from_date_treated_as_utc(self):
        window = resolve_window(GO_LIVE, NOW, from_date=datetime(2026, 1, 3, 8, 0))
        assert window.window_from == datetime(2026, 1, 3, 8, 0, tzinfo=timezone.utc)
        assert window.window_to == NOW
