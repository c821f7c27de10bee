#!/usr/bin/env python3
"""
Retry failed ERP pushes.

Claims each FAILED sync tracker under a lease, pushes it again and records
the outcome.  Safe to run from several hosts at once.

Usage:
    python3 scripts/retry_sync.py [--tenant-id ID] [--config PATH]
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
        description="Retry failed ERP sync pushes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--tenant-id",
        default=None,
        help="Sweep only this tenant (default: every active tenant).",
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

    from inventory_config import TenantDirectory, get_settings
    from inventory_kernel.exceptions import ConfigurationError
    from inventory_kernel.logging_config import configure_logging
    from inventory_services.nightly import run_retry_sweep

    try:
        settings = get_settings(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1
    configure_logging(level=settings.log_level)

    outcomes = run_retry_sweep(TenantDirectory(settings), settings, tenant_id=args.tenant_id)
    for outcome in outcomes:
        if outcome.ok and outcome.sweep is not None:
            s = outcome.sweep
            print(
                f"{outcome.tenant_id}: examined={s.examined} claimed={s.claimed} "
                f"synced={s.synced} failed={s.failed} skipped={s.skipped}"
            )
        else:
            print(f"{outcome.tenant_id}: ERROR {outcome.error}")
    return 0 if all(o.ok for o in outcomes) else 1


if __name__ == "__main__":
    sys.exit(main())
