"""
ServiceLayerClient -- synchronous SAP Business One Service Layer client.

Responsibility:
    Session login, document reads for reconciliation, document creation for
    the sync push, and batch stock lookups for the initial inventory load.

Architecture position:
    Integration -- called by inventory_services only.  Services depend on the
    ``ErpClient`` protocol so tests can pass fakes.

Invariants enforced:
    - One login at a time per client (``_login_lock``).  The session id is
      reused until ``session_minutes`` elapse, and a 401 triggers exactly one
      re-login and replay of the request.
    - Every value interpolated into an OData literal passes
      ``sanitize_odata_value``.
    - Document listing follows ``odata.nextLink`` for at most ``max_pages``.

Failure modes:
    - ExternalSystemError(retryable=True): connection failure, timeout, 5xx.
    - ExternalSystemError(retryable=False): 4xx, malformed response.  The
      message is the Service Layer's ``error.message.value`` when present.
"""

from __future__ import annotations

import threading
import time
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Protocol

import requests

from inventory_config.schema import ErpSettings
from inventory_erp.documents import parse_document
from inventory_erp.odata import doc_date_filter, next_link, sanitize_odata_value
from inventory_erp.payloads import (
    DeliveryNoteRequest,
    PurchaseDeliveryNoteRequest,
    StockTransferRequest,
    build_delivery_note,
    build_purchase_delivery_note,
    build_stock_transfer,
)
from inventory_kernel.domain.dtos import ErpDocument, ErpDocumentRef
from inventory_kernel.domain.types import ErpDocType
from inventory_kernel.exceptions import ExternalSystemError
from inventory_kernel.logging_config import get_logger

logger = get_logger("erp.client")


class ErpClient(Protocol):
    """What the services need from the ERP."""

    def verify_connection(self) -> dict[str, Any]: ...

    def get_documents_since(
        self,
        doc_type: ErpDocType,
        since: date | datetime,
        until: date | datetime | None = None,
    ) -> list[ErpDocument]: ...

    def get_batch_quantities(
        self, item_code: str, warehouse_code: str, bin_abs_entry: int | None = None
    ) -> dict[str, Decimal]: ...

    def create_stock_transfer(self, request: StockTransferRequest) -> ErpDocumentRef: ...

    def create_delivery_note(self, request: DeliveryNoteRequest) -> ErpDocumentRef: ...

    def create_purchase_delivery_note(
        self, request: PurchaseDeliveryNoteRequest
    ) -> ErpDocumentRef: ...

    def close(self) -> None: ...


def _error_from_response(response: requests.Response, action: str) -> ExternalSystemError:
    try:
        message = response.json()["error"]["message"]["value"]
    except (ValueError, KeyError, TypeError):
        message = response.reason or f"HTTP {response.status_code}"
    return ExternalSystemError(
        f"{action} failed: {message}",
        retryable=response.status_code >= 500,
        status_code=response.status_code,
    )


class ServiceLayerClient:
    """
    Contract:
        Thread-safe for concurrent callers; the session id is shared.

    Non-goals:
        - Does NOT retry failed calls other than the single 401 re-login.
          Retrying pushes is the sync tracker's job.
    """

    def __init__(
        self,
        settings: ErpSettings,
        http: requests.Session | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self._http = http or requests.Session()
        self._monotonic = monotonic
        self._login_lock = threading.Lock()
        self._session_id: str | None = None
        self._session_expires: float = 0.0
        self._created_queries: set[str] = set()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.settings.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self._http.request(
                method,
                self._url(path),
                timeout=self.settings.timeout_seconds,
                verify=self.settings.verify_ssl,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.warning(
                "erp_request_failed",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise ExternalSystemError(
                f"ERP unreachable: {method} {path}: {exc}", retryable=True
            ) from exc

    def _login_locked(self) -> str:
        response = self._send(
            "POST",
            "/Login",
            json={
                "CompanyDB": self.settings.company_db,
                "UserName": self.settings.username,
                "Password": self.settings.password,
            },
        )
        if not response.ok:
            self._session_id = None
            raise _error_from_response(response, "ERP login")
        session_id = response.json().get("SessionId")
        if not session_id:
            self._session_id = None
            raise ExternalSystemError("ERP login response missing SessionId", retryable=False)

        self._session_id = session_id
        self._session_expires = self._monotonic() + self.settings.session_minutes * 60
        logger.info("erp_login_succeeded", extra={"company_db": self.settings.company_db})
        return session_id

    def _ensure_session(self) -> str:
        with self._login_lock:
            if self._session_id is None or self._monotonic() >= self._session_expires:
                return self._login_locked()
            return self._session_id

    def _relogin(self, stale_session_id: str) -> str:
        with self._login_lock:
            # Another thread may already have replaced the stale session.
            if self._session_id is not None and self._session_id != stale_session_id:
                return self._session_id
            return self._login_locked()

    def _request(self, method: str, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        session_id = self._ensure_session()
        response = self._send(method, path, cookies={"B1SESSION": session_id}, **kwargs)
        if response.status_code == 401:
            logger.info("erp_session_expired", extra={"path": path})
            session_id = self._relogin(session_id)
            response = self._send(method, path, cookies={"B1SESSION": session_id}, **kwargs)

        if not response.ok:
            raise _error_from_response(response, action)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalSystemError(f"{action}: response is not JSON", retryable=False) from exc

    def logout(self) -> None:
        with self._login_lock:
            session_id, self._session_id = self._session_id, None
        if session_id is None:
            return
        try:
            self._send("POST", "/Logout", cookies={"B1SESSION": session_id})
        except ExternalSystemError:
            logger.warning("erp_logout_failed")

    def close(self) -> None:
        self.logout()
        self._http.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def verify_connection(self) -> dict[str, Any]:
        """Log in fresh and fetch company info.

        Company info needs extra permissions on some installations; a 4xx
        there still counts as connected since the login succeeded.
        """
        with self._login_lock:
            self._login_locked()
        try:
            return self._request(
                "POST", "/CompanyService_GetCompanyInfo", "Company info"
            )
        except ExternalSystemError as exc:
            if exc.retryable:
                raise
            logger.info("erp_company_info_unavailable", extra={"status_code": exc.status_code})
            return {}

    def get_documents_since(
        self,
        doc_type: ErpDocType,
        since: date | datetime,
        until: date | datetime | None = None,
    ) -> list[ErpDocument]:
        params: dict[str, str] | None = {
            "$filter": doc_date_filter(since, until),
            "$orderby": "DocEntry",
        }
        url: str | None = f"/{doc_type.value}"
        documents: list[ErpDocument] = []
        pages = 0

        while url is not None and pages < self.settings.max_pages:
            data = self._request(
                "GET",
                url,
                f"List {doc_type.value}",
                params=params,
                headers={"Prefer": "odata.maxpagesize=100"},
            )
            documents.extend(parse_document(doc_type, row) for row in data.get("value") or ())
            url = next_link(data, self.settings.base_url)
            params = None  # nextLink already carries the query
            pages += 1

        if url is not None:
            logger.warning(
                "erp_pagination_truncated",
                extra={"doc_type": doc_type.value, "pages": pages},
            )
        logger.info(
            "erp_documents_fetched",
            extra={"doc_type": doc_type.value, "count": len(documents), "pages": pages},
        )
        return documents

    def get_batch_quantities(
        self, item_code: str, warehouse_code: str, bin_abs_entry: int | None = None
    ) -> dict[str, Decimal]:
        """On-hand quantity per batch for an item at a warehouse (or bin)."""
        item = sanitize_odata_value(item_code, "item_code")
        warehouse = sanitize_odata_value(warehouse_code, "warehouse_code")

        def code(value: str) -> str:
            return "".join(ch for ch in value if ch.isalnum())[:20]

        if bin_abs_entry is not None:
            query_code = f"VBIN_{code(item)}_{int(bin_abs_entry)}"[:50]
            sql = (
                "SELECT T1.DistNumber AS BatchNum, T0.OnHandQty AS Quantity "
                "FROM OBBQ T0 INNER JOIN OBTN T1 ON T0.SnBMDAbs = T1.AbsEntry "
                f"WHERE T0.ItemCode = '{item}' AND T0.BinAbs = {int(bin_abs_entry)} "
                "AND T0.OnHandQty > 0"
            )
        else:
            query_code = f"VWH_{code(item)}_{code(warehouse)}"[:50]
            sql = (
                "SELECT T0.BatchNum, T0.Quantity FROM OIBT T0 "
                f"WHERE T0.ItemCode = '{item}' AND T0.WhsCode = '{warehouse}' "
                "AND T0.Quantity > 0"
            )

        quantities: dict[str, Decimal] = {}
        for row in self._run_sql_query(query_code, sql):
            batch = row.get("BatchNum")
            if batch:
                quantities[batch] = quantities.get(batch, Decimal("0")) + Decimal(
                    str(row.get("Quantity") or 0)
                )
        return quantities

    def _run_sql_query(self, query_code: str, sql: str) -> list[dict[str, Any]]:
        if query_code not in self._created_queries:
            try:
                self._request(
                    "POST",
                    "/SQLQueries",
                    "Create SQL query",
                    json={"SqlCode": query_code, "SqlName": "Batch stock", "SqlText": sql},
                )
            except ExternalSystemError as exc:
                # Already registered by an earlier session.
                if exc.retryable:
                    raise
            self._created_queries.add(query_code)

        rows: list[dict[str, Any]] = []
        url: str | None = f"/SQLQueries('{query_code}')/List"
        pages = 0
        while url is not None and pages < self.settings.max_pages:
            data = self._request("POST", url, "Run SQL query")
            rows.extend(data.get("value") or ())
            url = next_link(data, self.settings.base_url)
            pages += 1
        return rows

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _create(self, doc_type: ErpDocType, payload: dict[str, Any]) -> ErpDocumentRef:
        data = self._request("POST", f"/{doc_type.value}", f"Create {doc_type.value}", json=payload)
        if "DocEntry" not in data:
            raise ExternalSystemError(
                f"Create {doc_type.value}: response missing DocEntry", retryable=False
            )
        ref = ErpDocumentRef(
            doc_entry=int(data["DocEntry"]),
            doc_num=int(data["DocNum"]) if data.get("DocNum") is not None else None,
        )
        logger.info(
            "erp_document_created",
            extra={
                "doc_type": doc_type.value,
                "erp_doc_entry": ref.doc_entry,
                "erp_doc_num": ref.doc_num,
            },
        )
        return ref

    def create_stock_transfer(self, request: StockTransferRequest) -> ErpDocumentRef:
        return self._create(ErpDocType.STOCK_TRANSFER, build_stock_transfer(request))

    def create_delivery_note(self, request: DeliveryNoteRequest) -> ErpDocumentRef:
        return self._create(ErpDocType.DELIVERY_NOTE, build_delivery_note(request))

    def create_purchase_delivery_note(
        self, request: PurchaseDeliveryNoteRequest
    ) -> ErpDocumentRef:
        return self._create(
            ErpDocType.PURCHASE_DELIVERY_NOTE, build_purchase_delivery_note(request)
        )
