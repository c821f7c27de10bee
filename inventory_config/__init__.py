"""
inventory_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_settings()`` is the only way services and scripts obtain
    configuration.  It resolves the settings file from an explicit path,
    then ``INVENTORY_CONFIG``, then the bundled ``sets/default.yaml``, and
    applies environment overrides for ERP credentials and single-tenant
    mode.

Architecture position:
    Configuration -- sits above ``inventory_kernel`` and below
    ``inventory_services``.  The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` -- the resolved settings file does not exist.
    - ``ConfigurationError`` -- structurally invalid settings.

Audit relevance:
    Every load emits an ``inventory_config_loaded`` log entry with the
    source path and tenant count.  Secrets are never logged.
"""

from __future__ import annotations

import os
from pathlib import Path

from inventory_config.directory import TenantDirectory
from inventory_config.loader import ENV_CONFIG_PATH, load_settings
from inventory_config.schema import (
    AppSettings,
    ErpSettings,
    ReconciliationSettings,
    TenantEntry,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return _DEFAULT_CONFIG_PATH


def get_settings(path: Path | str | None = None) -> AppSettings:
    """The ONLY public settings entrypoint."""
    resolved = resolve_config_path(path)
    settings = load_settings(resolved)
    logger.info(
        "inventory_config_loaded",
        extra={
            "source_path": str(resolved),
            "tenant_count": len(settings.tenants),
            "single_tenant_id": settings.single_tenant_id,
            "erp_configured": settings.erp.configured,
        },
    )
    return settings


__all__ = [
    "AppSettings",
    "ErpSettings",
    "ReconciliationSettings",
    "TenantDirectory",
    "TenantEntry",
    "get_settings",
    "resolve_config_path",
]
