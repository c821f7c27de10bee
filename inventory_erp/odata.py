"""OData helpers for the Service Layer: value sanitizing, date filters, paging."""

from __future__ import annotations

import re
from datetime import date, datetime
from urllib.parse import urljoin

from inventory_kernel.exceptions import ValidationError

_SAFE_VALUE = re.compile(r"^[A-Za-z0-9.\-_ ]+$")


def sanitize_odata_value(value: object, field_name: str = "value") -> str:
    """Return ``value`` trimmed, or raise ValidationError if it could break out of a literal."""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    cleaned = value.strip()
    if not _SAFE_VALUE.match(cleaned):
        raise ValidationError(
            f"{field_name} contains invalid characters: {value!r}", field=field_name
        )
    return cleaned


def format_odata_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def doc_date_filter(since: date | datetime, until: date | datetime | None = None) -> str:
    clause = f"DocDate ge '{format_odata_date(since)}'"
    if until is not None:
        clause += f" and DocDate le '{format_odata_date(until)}'"
    return clause


def next_link(payload: dict, base_url: str) -> str | None:
    """Absolute URL of the next page, or None on the last page."""
    link = payload.get("odata.nextLink") or payload.get("@odata.nextLink")
    if not link:
        return None
    if link.startswith("http://") or link.startswith("https://"):
        return link
    return urljoin(base_url.rstrip("/") + "/", link.lstrip("/"))
