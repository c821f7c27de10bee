"""
Outbound document requests and their Service Layer JSON bodies.

The sync service fills the request dataclasses from local documents; the
builders here only translate field names.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class ErpLineRequest:
    item_code: str
    quantity: int
    batch_number: str
    price: Decimal | None = None
    currency: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class StockTransferRequest:
    from_warehouse: str
    to_warehouse: str
    lines: tuple[ErpLineRequest, ...]
    to_bin_abs_entry: int | None = None
    comments: str | None = None


@dataclass(frozen=True)
class DeliveryNoteRequest:
    card_code: str
    warehouse_code: str
    lines: tuple[ErpLineRequest, ...]
    card_name: str | None = None
    bin_abs_entry: int | None = None
    comments: str | None = None


@dataclass(frozen=True)
class PurchaseDeliveryNoteRequest:
    card_code: str
    warehouse_code: str
    lines: tuple[ErpLineRequest, ...]
    doc_date: date | None = None
    comments: str | None = None


def _batch(line: ErpLineRequest, with_expiry: bool = False) -> dict[str, Any]:
    batch: dict[str, Any] = {"BatchNumber": line.batch_number, "Quantity": line.quantity}
    if with_expiry and line.expiry_date is not None:
        batch["ExpiryDate"] = line.expiry_date.isoformat()
    return batch


def _bin_allocation(bin_abs_entry: int, quantity: int) -> dict[str, Any]:
    return {
        "BinAbsEntry": bin_abs_entry,
        "Quantity": quantity,
        "AllowNegativeQuantity": "tNO",
        "SerialAndBatchNumbersBaseLine": 0,
    }


def build_stock_transfer(request: StockTransferRequest) -> dict[str, Any]:
    lines = []
    for index, line in enumerate(request.lines):
        body: dict[str, Any] = {
            "LineNum": index,
            "ItemCode": line.item_code,
            "Quantity": line.quantity,
            "FromWarehouseCode": request.from_warehouse,
            "WarehouseCode": request.to_warehouse,
            "BatchNumbers": [_batch(line)],
        }
        if request.to_bin_abs_entry:
            allocation = _bin_allocation(request.to_bin_abs_entry, line.quantity)
            allocation["BinActionType"] = "batToWarehouse"
            body["StockTransferLinesBinAllocations"] = [allocation]
        lines.append(body)

    return {
        "FromWarehouse": request.from_warehouse,
        "ToWarehouse": request.to_warehouse,
        "Comments": request.comments or "Consignment transfer",
        "StockTransferLines": lines,
    }


def build_delivery_note(request: DeliveryNoteRequest) -> dict[str, Any]:
    lines = []
    for index, line in enumerate(request.lines):
        body: dict[str, Any] = {
            "LineNum": index,
            "ItemCode": line.item_code,
            "Quantity": line.quantity,
            "WarehouseCode": request.warehouse_code,
            "BatchNumbers": [_batch(line)],
        }
        if line.price is not None:
            body["Price"] = float(line.price)
            body["Currency"] = line.currency or "USD"
        if request.bin_abs_entry:
            body["DocumentLinesBinAllocations"] = [
                _bin_allocation(request.bin_abs_entry, line.quantity)
            ]
        lines.append(body)

    payload: dict[str, Any] = {
        "CardCode": request.card_code,
        "Comments": request.comments or "Consumption",
        "DocumentLines": lines,
    }
    if request.card_name:
        payload["CardName"] = request.card_name
    return payload


def build_purchase_delivery_note(request: PurchaseDeliveryNoteRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "CardCode": request.card_code,
        "Comments": request.comments or "Goods receipt",
        "DocumentLines": [
            {
                "ItemCode": line.item_code,
                "Quantity": line.quantity,
                "WarehouseCode": request.warehouse_code,
                "BatchNumbers": [_batch(line, with_expiry=True)],
            }
            for line in request.lines
        ],
    }
    if request.doc_date is not None:
        payload["DocDate"] = request.doc_date.isoformat()
    return payload
