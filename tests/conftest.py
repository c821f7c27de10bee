"""
Pytest fixtures for the inventory ledger test suite.

Every test gets its own in-memory SQLite store with the full schema.  Kernel
tests use the ``session`` fixture (flush only, rolled back at teardown);
service tests use ``tenant_ctx``, whose session scopes commit for real.

Master data (two products, the central warehouse and two centros) is seeded
and committed before either is handed out, so both styles see it.
"""

import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import (
    create_session_factory,
    create_store_engine,
    create_tables,
    session_scope,
)
from inventory_kernel.db.tenancy import TenantContext
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.dtos import ErpDocument, ErpDocumentLine, ErpDocumentRef
from inventory_kernel.domain.types import ErpDocType, LocationType
from inventory_kernel.exceptions import ExternalSystemError
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.master_data import LocationModel, ProductModel
from inventory_kernel.services.lot_ledger import LotLedger

TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_TENANT_ID = "tenant-a"

# Tracked ERP item codes of the seeded products
GUIDEWIRE_CODE = "GW-001"
STENT_CODE = "ST-002"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """JSON logging into a throwaway buffer, DEBUG and up."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Tenant and run ids bound by one test must not leak into the next."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tenant_ctx):
            ...
            logs = captured_logs()
            assert any(r["message"] == "lot_received" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """2026-01-15 12:00 UTC until advanced."""
    return DeterministicClock()


@pytest.fixture
def engine():
    store = create_store_engine("sqlite://")
    create_tables(store)
    yield store
    store.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@dataclass(frozen=True)
class MasterData:
    actor_id: UUID
    guidewire_id: UUID
    stent_id: UUID
    warehouse_id: UUID
    centro_id: UUID
    centro_sur_id: UUID


def seed_master_data(factory: sessionmaker[Session], actor_id: UUID = TEST_ACTOR_ID) -> MasterData:
    """Two tracked products, the central warehouse and two centros."""
    with session_scope(factory) as session:
        guidewire = ProductModel(
            code="GW",
            name="Hydrophilic guidewire 0.035",
            erp_item_code=GUIDEWIRE_CODE,
            unit_price=Decimal("120.00"),
            currency="USD",
            created_by_id=actor_id,
        )
        stent = ProductModel(
            code="ST",
            name="Drug-eluting stent 3.0x18",
            erp_item_code=STENT_CODE,
            unit_price=Decimal("950.00"),
            currency="USD",
            created_by_id=actor_id,
        )
        warehouse = LocationModel(
            name="Central Warehouse",
            location_type=LocationType.WAREHOUSE.value,
            erp_warehouse_code="01",
            created_by_id=actor_id,
        )
        centro = LocationModel(
            name="Centro Norte",
            location_type=LocationType.CENTRO.value,
            erp_warehouse_code="CN01",
            erp_bin_abs_entry=42,
            erp_card_code="C-NORTE",
            created_by_id=actor_id,
        )
        centro_sur = LocationModel(
            name="Centro Sur",
            location_type=LocationType.CENTRO.value,
            erp_warehouse_code="CS01",
            created_by_id=actor_id,
        )
        session.add_all([guidewire, stent, warehouse, centro, centro_sur])
        session.flush()
        return MasterData(
            actor_id=actor_id,
            guidewire_id=guidewire.id,
            stent_id=stent.id,
            warehouse_id=warehouse.id,
            centro_id=centro.id,
            centro_sur_id=centro_sur.id,
        )


@pytest.fixture
def master_data(session_factory, test_actor_id) -> MasterData:
    return seed_master_data(session_factory, test_actor_id)


@pytest.fixture
def session(session_factory, master_data) -> Generator[Session, None, None]:
    """Flush-only session; everything it writes is rolled back at teardown."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def tenant_ctx(session_factory, master_data, deterministic_clock) -> TenantContext:
    return TenantContext(
        tenant_id=TEST_TENANT_ID,
        session_factory=session_factory,
        clock=deterministic_clock,
    )


@pytest.fixture
def ledger(session, deterministic_clock) -> LotLedger:
    return LotLedger(session, deterministic_clock)


@pytest.fixture
def receive_stock(tenant_ctx, master_data):
    """Commit a warehouse receipt through the ledger and return the MovementResult."""

    def _receive(
        lot_number: str = "LOT-A",
        quantity: int = 10,
        expiry_date: date = date(2027, 6, 30),
        product_id: UUID | None = None,
        location_id: UUID | None = None,
    ):
        with tenant_ctx.session_scope() as s:
            return LotLedger(s, tenant_ctx.clock).receive(
                product_id=product_id or master_data.guidewire_id,
                location_id=location_id or master_data.warehouse_id,
                lot_number=lot_number,
                quantity=quantity,
                expiry_date=expiry_date,
                actor_id=master_data.actor_id,
            )

    return _receive


# =============================================================================
# ERP fakes
# =============================================================================


def _day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class FakeErpClient:
    """In-memory ErpClient.  Filters documents by day the way the Service Layer does."""

    def __init__(self):
        self.documents: dict[ErpDocType, list[ErpDocument]] = defaultdict(list)
        self.connection_error: ExternalSystemError | None = None
        self.fetch_errors: dict[ErpDocType, Exception] = {}
        self.create_error: ExternalSystemError | None = None
        self.created: list[tuple[ErpDocType, object]] = []
        self.batches: dict[tuple[str, str, int | None], dict[str, Decimal]] = {}
        self.fetch_calls: list[tuple[ErpDocType, datetime, datetime | None]] = []
        self.closed = False
        self._next_entry = 5000
        self._lock = threading.Lock()

    def add(self, *documents: ErpDocument) -> None:
        for document in documents:
            self.documents[document.doc_type].append(document)

    def verify_connection(self) -> dict:
        if self.connection_error is not None:
            raise self.connection_error
        return {"CompanyName": "Demo Medical"}

    def get_documents_since(self, doc_type, since, until=None):
        self.fetch_calls.append((doc_type, since, until))
        if doc_type in self.fetch_errors:
            raise self.fetch_errors[doc_type]
        return [
            d
            for d in self.documents[doc_type]
            if _day(d.doc_date) >= _day(since) and (until is None or _day(d.doc_date) <= _day(until))
        ]

    def get_batch_quantities(self, item_code, warehouse_code, bin_abs_entry=None):
        return dict(self.batches.get((item_code, warehouse_code, bin_abs_entry), {}))

    def _create(self, doc_type: ErpDocType, request) -> ErpDocumentRef:
        with self._lock:
            self.created.append((doc_type, request))
            if self.create_error is not None:
                raise self.create_error
            self._next_entry += 1
            return ErpDocumentRef(doc_entry=self._next_entry, doc_num=self._next_entry + 10000)

    def create_stock_transfer(self, request):
        return self._create(ErpDocType.STOCK_TRANSFER, request)

    def create_delivery_note(self, request):
        return self._create(ErpDocType.DELIVERY_NOTE, request)

    def create_purchase_delivery_note(self, request):
        return self._create(ErpDocType.PURCHASE_DELIVERY_NOTE, request)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_erp() -> FakeErpClient:
    return FakeErpClient()


@pytest.fixture
def make_erp_document():
    """Factory for ErpDocument snapshots with sensible defaults."""

    def _make(
        doc_entry: int,
        doc_type: ErpDocType = ErpDocType.DELIVERY_NOTE,
        doc_date: datetime = datetime(2026, 1, 10, tzinfo=timezone.utc),
        doc_num: int | None = None,
        item_codes: tuple[str, ...] = (GUIDEWIRE_CODE,),
        batch_number: str = "LOT-A",
        quantity: Decimal = Decimal("2"),
        warehouse_code: str | None = "CN01",
        bin_abs_entry: int | None = None,
        card_code: str | None = "C-NORTE",
        expiry: date | None = date(2027, 6, 30),
    ) -> ErpDocument:
        lines = tuple(
            ErpDocumentLine(
                item_code=code,
                quantity=quantity,
                batch_numbers=(batch_number,),
                warehouse_code=warehouse_code,
                price=Decimal("120.00"),
                batch_expiry={batch_number: expiry} if expiry else {},
                batch_quantities={batch_number: quantity},
                bin_abs_entry=bin_abs_entry,
            )
            for code in item_codes
        )
        return ErpDocument(
            doc_type=doc_type,
            doc_entry=doc_entry,
            doc_num=doc_num if doc_num is not None else doc_entry + 100,
            doc_date=doc_date,
            card_code=card_code,
            card_name="Hospital Norte" if card_code else None,
            lines=lines,
            raw={"DocEntry": doc_entry},
        )

    return _make
