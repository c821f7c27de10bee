#!/usr/bin/env python3
"""
Create the inventory tables in each tenant store.

Idempotent: existing tables are left alone.

Usage:
    python3 scripts/create_schema.py [--tenant-id ID] [--config PATH]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create inventory tables per tenant store.")
    parser.add_argument("--tenant-id", default=None, help="Only this tenant.")
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from inventory_config import TenantDirectory, get_settings
    from inventory_kernel.db.engine import create_store_engine, create_tables
    from inventory_kernel.exceptions import ConfigurationError

    try:
        settings = get_settings(args.config)
        directory = TenantDirectory(settings)
        tenants = (
            [directory.get(args.tenant_id)] if args.tenant_id else list(settings.tenants)
        )
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    for tenant in tenants:
        engine = create_store_engine(tenant.database_url)
        try:
            create_tables(engine)
        finally:
            engine.dispose()
        print(f"{tenant.tenant_id}: schema ready")
    return 0


if __name__ == "__main__":
    sys.exit(main())
