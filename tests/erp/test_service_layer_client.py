"""
Tests for ServiceLayerClient against a scripted HTTP session.

The scripted session replays canned ``requests.Response`` objects in order
and records every call, so session handling, paging and error mapping can
be checked without a Service Layer.
"""

import json
from datetime import date
from decimal import Decimal

import pytest
import requests

from inventory_config.schema import ErpSettings
from inventory_erp.client import ServiceLayerClient
from inventory_erp.payloads import ErpLineRequest, StockTransferRequest
from inventory_kernel.domain.types import ErpDocType
from inventory_kernel.exceptions import ExternalSystemError, ValidationError

BASE_URL = "https://erp.example.com/b1s/v1"


def _response(status: int = 200, body=None, reason: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.url = BASE_URL
    response._content = json.dumps(body).encode() if body is not None else b""
    return response


def _login_ok(session_id: str = "S1") -> requests.Response:
    return _response(200, {"SessionId": session_id})


class ScriptedHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def settings() -> ErpSettings:
    return ErpSettings(
        base_url=BASE_URL, company_db="DEMO", username="manager", password="secret", max_pages=3
    )


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def http() -> ScriptedHttp:
    return ScriptedHttp()


@pytest.fixture
def client(settings, http, monotonic) -> ServiceLayerClient:
    return ServiceLayerClient(settings, http=http, monotonic=monotonic)


def _delivery_row(entry: int) -> dict:
    return {
        "DocEntry": entry,
        "DocNum": entry + 100,
        "DocDate": "2026-01-10T00:00:00Z",
        "CardCode": "C-NORTE",
        "DocumentLines": [
            {
                "ItemCode": "GW-001",
                "Quantity": 2.0,
                "WarehouseCode": "CN01",
                "BatchNumbers": [{"BatchNumber": "LOT-A", "Quantity": 2.0}],
            }
        ],
    }


class TestSession:
    def test_login_then_cookie(self, client, http):
        http.queue(_login_ok("S1"), _response(200, {"value": []}))
        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))

        login, listing = http.calls
        assert login["url"] == f"{BASE_URL}/Login"
        assert login["json"] == {"CompanyDB": "DEMO", "UserName": "manager", "Password": "secret"}
        assert listing["cookies"] == {"B1SESSION": "S1"}
        assert listing["verify"] is True

    def test_session_reused_until_expiry(self, client, http, monotonic):
        http.queue(_login_ok("S1"), _response(200, {"value": []}), _response(200, {"value": []}))
        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        assert [c["url"].rsplit("/", 1)[-1] for c in http.calls].count("Login") == 1

        monotonic.now += 25 * 60
        http.queue(_login_ok("S2"), _response(200, {"value": []}))
        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        assert http.calls[-1]["cookies"] == {"B1SESSION": "S2"}

    def test_401_triggers_one_relogin(self, client, http):
        http.queue(
            _login_ok("S1"),
            _response(401, {"error": {"message": {"value": "Invalid session"}}}),
            _login_ok("S2"),
            _response(200, {"value": [_delivery_row(1)]}),
        )
        documents = client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))

        assert [d.doc_entry for d in documents] == [1]
        assert http.calls[-1]["cookies"] == {"B1SESSION": "S2"}

    def test_login_rejected(self, client, http):
        http.queue(_response(401, {"error": {"message": {"value": "Wrong password"}}}))
        with pytest.raises(ExternalSystemError) as exc_info:
            client.verify_connection()
        assert "Wrong password" in str(exc_info.value)
        assert exc_info.value.retryable is False

    def test_close_logs_out(self, client, http):
        http.queue(_login_ok("S1"), _response(200, {"value": []}), _response(204))
        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        client.close()

        assert http.calls[-1]["url"] == f"{BASE_URL}/Logout"
        assert http.closed

    def test_close_without_session_skips_logout(self, client, http):
        client.close()
        assert http.calls == []
        assert http.closed


class TestVerifyConnection:
    def test_company_info_returned(self, client, http):
        http.queue(_login_ok(), _response(200, {"CompanyName": "Demo Medical"}))
        assert client.verify_connection() == {"CompanyName": "Demo Medical"}

    def test_company_info_forbidden_still_connected(self, client, http):
        http.queue(_login_ok(), _response(403, reason="Forbidden"))
        assert client.verify_connection() == {}

    def test_network_error_is_retryable(self, client, http):
        http.queue(requests.ConnectionError("connection refused"))
        with pytest.raises(ExternalSystemError) as exc_info:
            client.verify_connection()
        assert exc_info.value.retryable is True


class TestListing:
    def test_filter_and_pagination(self, client, http):
        http.queue(
            _login_ok(),
            _response(
                200,
                {"value": [_delivery_row(1)], "odata.nextLink": "DeliveryNotes?$skip=100"},
            ),
            _response(200, {"value": [_delivery_row(2)]}),
        )
        documents = client.get_documents_since(
            ErpDocType.DELIVERY_NOTE, date(2026, 1, 1), date(2026, 1, 31)
        )

        first, second = http.calls[1], http.calls[2]
        assert first["params"]["$filter"] == (
            "DocDate ge '2026-01-01' and DocDate le '2026-01-31'"
        )
        assert second["url"] == f"{BASE_URL}/DeliveryNotes?$skip=100"
        assert second["params"] is None
        assert [d.doc_entry for d in documents] == [1, 2]
        assert documents[0].lines[0].batch_quantities == {"LOT-A": Decimal("2.0")}

    def test_pagination_truncated_at_max_pages(self, client, http, captured_logs):
        page = {"value": [], "odata.nextLink": "DeliveryNotes?$skip=100"}
        http.queue(_login_ok(), *(_response(200, page) for _ in range(3)))

        client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))

        assert len(http.calls) == 4
        assert any(r["message"] == "erp_pagination_truncated" for r in captured_logs())

    def test_server_error_is_retryable(self, client, http):
        http.queue(_login_ok(), _response(503, reason="Service Unavailable"))
        with pytest.raises(ExternalSystemError) as exc_info:
            client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503

    def test_malformed_row_rejected(self, client, http):
        http.queue(_login_ok(), _response(200, {"value": [{"DocNum": 1}]}))
        with pytest.raises(ExternalSystemError) as exc_info:
            client.get_documents_since(ErpDocType.DELIVERY_NOTE, date(2026, 1, 1))
        assert exc_info.value.retryable is False


class TestCreate:
    def _request(self) -> StockTransferRequest:
        return StockTransferRequest(
            from_warehouse="01",
            to_warehouse="CN01",
            lines=(ErpLineRequest("GW-001", 3, "LOT-A"),),
            to_bin_abs_entry=42,
        )

    def test_created_reference(self, client, http):
        http.queue(_login_ok(), _response(201, {"DocEntry": 77, "DocNum": 1077}))
        ref = client.create_stock_transfer(self._request())

        assert (ref.doc_entry, ref.doc_num) == (77, 1077)
        body = http.calls[1]["json"]
        assert body["FromWarehouse"] == "01"
        assert body["StockTransferLines"][0]["StockTransferLinesBinAllocations"][0][
            "BinAbsEntry"
        ] == 42

    def test_rejection_message_surfaces(self, client, http):
        http.queue(
            _login_ok(),
            _response(400, {"error": {"code": -10, "message": {"value": "Batch LOT-A not found"}}}),
        )
        with pytest.raises(ExternalSystemError) as exc_info:
            client.create_stock_transfer(self._request())
        assert "Batch LOT-A not found" in str(exc_info.value)
        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == 400

    def test_missing_doc_entry(self, client, http):
        http.queue(_login_ok(), _response(201, {"DocNum": 5}))
        with pytest.raises(ExternalSystemError):
            client.create_stock_transfer(self._request())


class TestBatchQuantities:
    def test_warehouse_query_registered_once(self, client, http):
        rows = {"value": [{"BatchNum": "LOT-A", "Quantity": 4}, {"BatchNum": "LOT-A", "Quantity": 1}]}
        http.queue(_login_ok(), _response(201, {}), _response(200, rows), _response(200, rows))

        first = client.get_batch_quantities("GW-001", "CN01")
        second = client.get_batch_quantities("GW-001", "CN01")

        assert first == second == {"LOT-A": Decimal("5")}
        created = [c for c in http.calls if c["url"].endswith("/SQLQueries")]
        assert len(created) == 1
        assert "WhsCode = 'CN01'" in created[0]["json"]["SqlText"]

    def test_bin_query(self, client, http):
        http.queue(_login_ok(), _response(201, {}), _response(200, {"value": []}))
        client.get_batch_quantities("GW-001", "CN01", bin_abs_entry=42)
        assert "BinAbs = 42" in http.calls[1]["json"]["SqlText"]

    def test_injection_rejected(self, client, http):
        with pytest.raises(ValidationError):
            client.get_batch_quantities("GW' OR 1=1 --", "CN01")
        assert http.calls == []
