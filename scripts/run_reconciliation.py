#!/usr/bin/env python3
"""
Run ERP reconciliation for every active tenant (or one tenant).

Scheduled nightly by cron or a systemd timer.  Each tenant runs in
isolation: a failure for one tenant is reported and the others continue.

Usage:
    python3 scripts/run_reconciliation.py --run-now [options]

Examples:
    # All active tenants from the default settings file
    python3 scripts/run_reconciliation.py --run-now

    # One tenant, explicit settings file
    python3 scripts/run_reconciliation.py --run-now --tenant-id acme --config /etc/inventory.yaml
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile local inventory documents against the ERP.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--run-now",
        action="store_true",
        help="Run immediately. Without this flag the script only prints the tenants it would run.",
    )
    parser.add_argument(
        "--tenant-id",
        default=None,
        help="Reconcile only this tenant (default: every active tenant).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings YAML (default: INVENTORY_CONFIG env or bundled default).",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from inventory_config import TenantDirectory, get_settings
    from inventory_kernel.exceptions import ConfigurationError
    from inventory_kernel.logging_config import configure_logging
    from inventory_services.nightly import run_nightly

    try:
        settings = get_settings(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1
    configure_logging(level=settings.log_level)

    directory = TenantDirectory(settings)
    try:
        tenants = (
            [directory.get(args.tenant_id)] if args.tenant_id else directory.list_active_tenants()
        )
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if not args.run_now:
        print("Tenants that would be reconciled (pass --run-now to run):")
        for tenant in tenants:
            print(f"  {tenant.tenant_id}")
        return 0

    outcomes = run_nightly(directory, settings, tenant_id=args.tenant_id)
    for outcome in outcomes:
        if outcome.ok and outcome.run is not None:
            run = outcome.run
            print(
                f"{outcome.tenant_id}: {run.status.value} "
                f"(checked={run.documents_checked}, new_external={run.external_docs_new})"
            )
        else:
            print(f"{outcome.tenant_id}: ERROR {outcome.error}")
    return 0 if all(o.ok for o in outcomes) else 1


if __name__ == "__main__":
    sys.exit(main())
