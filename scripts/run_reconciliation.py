#!/usr/bin/env python3
"""
Run an inventory reconciliation job against the configured database.

Settings come from get_active_settings(): packaged defaults, overlaid by
--config (or INVENTORY_LEDGER_CONFIG), with DATABASE_URL taking precedence
for the database URL.

Usage:
    python3 scripts/run_reconciliation.py [options]

Examples:
    # Scheduled run as the system actor
    python3 scripts/run_reconciliation.py

    # Manual run by an operator, creating tables on a fresh SQLite file
    python3 scripts/run_reconciliation.py --actor-id <uuid> --create-tables

    # Also send the completion notice
    python3 scripts/run_reconciliation.py --notify-on-completion

Exit status is 0 on a completed run, 2 when another run is in progress,
1 otherwise.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run an INVENTORY reconciliation and print its outcome.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings overlay (default: INVENTORY_LEDGER_CONFIG or none).",
    )
    parser.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="Actor recorded on the report (default: the system actor).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables and immutability triggers before running.",
    )
    parser.add_argument(
        "--notify-on-completion",
        action="store_true",
        help="Send the completion notice in addition to critical alerts.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from inventory_config import get_active_settings
    from inventory_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from inventory_kernel.db.immutability import register_immutability_listeners
    from inventory_kernel.logging_config import configure_logging
    from inventory_kernel.models.reconciliation import ReconciliationStatus
    from inventory_services import run_reconciliation_job

    configure_logging(level=getattr(logging, args.log_level))
    settings = get_active_settings(args.config)

    init_engine_from_url(settings.database_url)
    if args.create_tables:
        create_tables()
    register_immutability_listeners()

    result = run_reconciliation_job(
        get_session_factory(),
        actor_id=args.actor_id,
        settings=settings,
        notify_on_completion=args.notify_on_completion,
    )

    if result.success:
        print(
            f"Reconciliation {result.report_id} {result.status.value} "
            f"in {result.duration_seconds}s: "
            f"{result.total_discrepancies} discrepancies "
            f"({result.critical_discrepancies} critical)"
        )
        return 0

    print(f"Reconciliation did not complete: {result.message}", file=sys.stderr)
    if result.status is None and result.error == "RECONCILIATION_IN_PROGRESS":
        return 2
    if result.status is ReconciliationStatus.FAILED:
        print(f"Report {result.report_id} marked FAILED", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
