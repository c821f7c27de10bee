"""Map Service Layer document JSON to ErpDocument snapshots."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from inventory_kernel.domain.dtos import ErpDocument, ErpDocumentLine
from inventory_kernel.domain.types import ErpDocType
from inventory_kernel.exceptions import ExternalSystemError

LINES_KEY = {
    ErpDocType.STOCK_TRANSFER: "StockTransferLines",
    ErpDocType.DELIVERY_NOTE: "DocumentLines",
    ErpDocType.PURCHASE_DELIVERY_NOTE: "DocumentLines",
}


def parse_doc_date(value: Any) -> datetime:
    """Service Layer dates come as 'YYYY-MM-DD' or 'YYYY-MM-DDT00:00:00Z'."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    day = date.fromisoformat(str(value)[:10])
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _bin_abs_entry(line: Mapping[str, Any]) -> int | None:
    allocations = (
        line.get("DocumentLinesBinAllocations") or line.get("StockTransferLinesBinAllocations") or ()
    )
    for allocation in allocations:
        if allocation.get("BinActionType", "batToWarehouse") == "batToWarehouse":
            return _int(allocation.get("BinAbsEntry"))
    return None


def parse_line(data: Mapping[str, Any]) -> ErpDocumentLine:
    batches = data.get("BatchNumbers") or ()
    expiry: dict[str, date] = {}
    quantities: dict[str, Decimal] = {}
    for batch in batches:
        number = batch.get("BatchNumber")
        if not number:
            continue
        quantities[number] = quantities.get(number, Decimal("0")) + (
            _decimal(batch.get("Quantity")) or Decimal("0")
        )
        if batch.get("ExpiryDate"):
            expiry[number] = date.fromisoformat(str(batch["ExpiryDate"])[:10])

    return ErpDocumentLine(
        item_code=str(data.get("ItemCode", "")),
        quantity=_decimal(data.get("Quantity")) or Decimal("0"),
        batch_numbers=tuple(b["BatchNumber"] for b in batches if b.get("BatchNumber")),
        warehouse_code=data.get("WarehouseCode"),
        from_warehouse_code=data.get("FromWarehouseCode"),
        price=_decimal(data.get("Price")),
        batch_expiry=expiry,
        batch_quantities=quantities,
        bin_abs_entry=_bin_abs_entry(data),
    )


def parse_document(doc_type: ErpDocType, data: Mapping[str, Any]) -> ErpDocument:
    try:
        doc_entry = int(data["DocEntry"])
        doc_date = parse_doc_date(data["DocDate"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ExternalSystemError(
            f"Malformed {doc_type.value} document: {exc}", retryable=False
        ) from exc

    return ErpDocument(
        doc_type=doc_type,
        doc_entry=doc_entry,
        doc_num=_int(data.get("DocNum")),
        doc_date=doc_date,
        card_code=data.get("CardCode"),
        card_name=data.get("CardName"),
        from_warehouse_code=data.get("FromWarehouse"),
        to_warehouse_code=data.get("ToWarehouse"),
        comments=data.get("Comments"),
        lines=tuple(parse_line(line) for line in data.get(LINES_KEY[doc_type]) or ()),
        raw=dict(data),
    )
