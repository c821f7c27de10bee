"""
Settings loader (``inventory_config.loader``).

Responsibility:
    Reads one YAML settings file and applies environment overrides,
    producing a frozen ``AppSettings``.

Environment overrides (applied after the file):
    INVENTORY_ERP_URL, INVENTORY_ERP_USERNAME, INVENTORY_ERP_PASSWORD
    INVENTORY_TENANT_ID   single-tenant mode

Failure modes:
    - Missing file -> ``FileNotFoundError`` propagates.
    - Malformed YAML -> ``yaml.YAMLError`` propagates.
    - Structurally invalid settings -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from inventory_config.schema import (
    AppSettings,
    ErpSettings,
    ReconciliationSettings,
    TenantEntry,
)
from inventory_kernel.domain.types import ErpDocType
from inventory_kernel.exceptions import ConfigurationError

ENV_CONFIG_PATH = "INVENTORY_CONFIG"
ENV_ERP_URL = "INVENTORY_ERP_URL"
ENV_ERP_USERNAME = "INVENTORY_ERP_USERNAME"
ENV_ERP_PASSWORD = "INVENTORY_ERP_PASSWORD"
ENV_TENANT_ID = "INVENTORY_TENANT_ID"


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def _positive_int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{key} must be a positive integer, got {value!r}")
    return value


def parse_erp(data: Mapping[str, Any]) -> ErpSettings:
    return ErpSettings(
        base_url=str(data.get("base_url", "")).rstrip("/"),
        company_db=str(data.get("company_db", "")),
        username=str(data.get("username", "")),
        password=str(data.get("password", "")),
        verify_ssl=bool(data.get("verify_ssl", True)),
        timeout_seconds=float(data.get("timeout_seconds", 30.0)),
        session_minutes=_positive_int(data, "session_minutes", 25),
        max_pages=_positive_int(data, "max_pages", 100),
    )


def parse_reconciliation(data: Mapping[str, Any]) -> ReconciliationSettings:
    defaults = ReconciliationSettings()
    raw_types = data.get("document_types")
    if raw_types is None:
        doc_types = defaults.document_types
    else:
        try:
            doc_types = tuple(ErpDocType(t) for t in raw_types)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown ERP document type: {exc}") from exc

    return ReconciliationSettings(
        stale_run_minutes=_positive_int(data, "stale_run_minutes", defaults.stale_run_minutes),
        document_types=doc_types,
        max_sync_retries=_positive_int(data, "max_sync_retries", defaults.max_sync_retries),
        retry_lease_seconds=_positive_int(
            data, "retry_lease_seconds", defaults.retry_lease_seconds
        ),
        retry_batch_size=_positive_int(data, "retry_batch_size", defaults.retry_batch_size),
    )


def parse_tenant(data: Mapping[str, Any]) -> TenantEntry:
    try:
        tenant_id = str(data["tenant_id"])
        database_url = str(data["database_url"])
    except KeyError as exc:
        raise ConfigurationError(f"Tenant entry missing {exc.args[0]}") from exc
    return TenantEntry(
        tenant_id=tenant_id,
        database_url=database_url,
        active=bool(data.get("active", True)),
        erp_company_db=data.get("erp_company_db"),
        name=data.get("name"),
    )


def parse_settings(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
    source_path: str | None = None,
) -> AppSettings:
    """Build AppSettings from a parsed mapping plus environment overrides."""
    env = os.environ if environ is None else environ

    overrides = {
        "base_url": env.get(ENV_ERP_URL),
        "username": env.get(ENV_ERP_USERNAME),
        "password": env.get(ENV_ERP_PASSWORD),
    }
    erp_data = dict(data.get("erp") or {})
    erp_data.update({k: v for k, v in overrides.items() if v})
    erp = parse_erp(erp_data)

    tenants = tuple(parse_tenant(t) for t in data.get("tenants") or ())
    ids = [t.tenant_id for t in tenants]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate tenant ids: {duplicates}")

    return AppSettings(
        erp=erp,
        reconciliation=parse_reconciliation(data.get("reconciliation") or {}),
        tenants=tenants,
        single_tenant_id=env.get(ENV_TENANT_ID) or data.get("single_tenant_id"),
        log_level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
        source_path=source_path,
    )


def load_settings(path: Path, environ: Mapping[str, str] | None = None) -> AppSettings:
    return parse_settings(load_yaml_file(path), environ=environ, source_path=str(path))
