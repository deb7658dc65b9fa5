#!/usr/bin/env python3
"""Reconcile a chat-log dump against the farm ledger.

This script:
1. Parses a JSON dump of chat-log records (a list, or {"messages": [...]})
2. Appends new activities to the ledger in the data directory
3. Prints each worker's statement and the manager pool distribution
4. Optionally pays every worker and manager

Usage:
    python scripts/reconcile_log.py export.json
    python scripts/reconcile_log.py export.json --data-dir data --pay-workers
    python scripts/reconcile_log.py export.json --json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from farm_ledger.abuse import ActivityScreen
from farm_ledger.config import configure_logging, get_logger, get_settings, log_run
from farm_ledger.managers import ManagerReconciler
from farm_ledger.models import Role
from farm_ledger.operations import LedgerOperations
from farm_ledger.payments import PayrollService
from farm_ledger.pipeline import open_context
from farm_ledger.storage import JsonFileStore

logger = get_logger(__name__, component="cli")


def load_records(path: Path) -> list[dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("messages") or data.get("records") or []
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of records")
    return data


def print_statements(payroll: PayrollService, workers: list) -> None:
    print("\n" + "=" * 60)
    print("WORKER STATEMENTS")
    print("=" * 60)
    for profile in workers:
        statement = payroll.worker_statement(profile.id)
        if statement.gross == 0 and statement.total_charges == 0:
            continue
        print(f"\n  {profile.display_name} ({profile.id})")
        print(f"    Plantation:      ${statement.earnings.plantation.total:>10}")
        print(f"    Animal delivery: ${statement.earnings.animal_delivery.total:>10}")
        print(f"    Charges:         ${statement.total_charges:>10}")
        print(f"    Net:             ${statement.net_payment:>10}")
        for violation in statement.abuse.violations:
            print(f"    ⚠ {violation}")


def print_distribution(managers: ManagerReconciler) -> None:
    shares = managers.distribution()
    if not shares:
        return
    print("\n" + "=" * 60)
    print(f"MANAGER POOL (available ${managers.available_pool()})")
    print("=" * 60)
    for share in shares:
        print(
            f"  {share.manager_name:<24} {share.snapshot.total_points:>10} pts"
            f"  ${share.amount:>10}"
        )


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile a farm chat-log dump into the ledger and payroll",
    )
    parser.add_argument("log", type=Path, help="JSON file with chat-log records")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding the ledger documents (default: FARM_DATA_DIR)",
    )
    parser.add_argument(
        "--screen",
        action="store_true",
        help="Run anomaly screening on new activities",
    )
    parser.add_argument(
        "--pay-workers",
        action="store_true",
        help="Pay every worker with unpaid service",
    )
    parser.add_argument(
        "--pay-managers",
        action="store_true",
        help="Pay every manager their pool share",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the ingest report and statements as JSON",
    )
    args = parser.parse_args()

    configure_logging()
    with log_run(log=args.log.name):
        return reconcile(args)


def reconcile(args: argparse.Namespace) -> int:
    data_dir = args.data_dir or Path(get_settings().data_dir)

    try:
        records = load_records(args.log)
    except (OSError, ValueError) as e:
        print(f"Error: could not read {args.log}: {e}")
        return 1

    context = open_context(JsonFileStore(data_dir))
    ops = LedgerOperations(context, screen=ActivityScreen() if args.screen else None)
    report = ops.pipeline.ingest(records)

    payroll = ops.payroll
    managers = ops.managers
    managers.sync_expectations()
    workers = context.directory.with_role(Role.WORKER)

    if args.json:
        output = {
            "ingest": report.to_dict(),
            "statements": [payroll.worker_statement(p.id).to_dict() for p in workers],
            "managers": [s.to_dict() for s in managers.distribution()],
        }
        print(json.dumps(output, indent=2, default=str))
    else:
        print("=" * 60)
        print(f"Ingested {args.log.name}")
        print("=" * 60)
        print(f"  Parsed:     {report.parsed}")
        print(f"  Appended:   {report.appended}")
        print(f"  Duplicates: {report.duplicates}")
        print(f"  Failures:   {report.failures}")
        for reason, count in report.reasons.most_common():
            print(f"    - {reason}: {count}")
        if report.new_workers:
            print(f"  New workers: {', '.join(report.new_workers)}")
        print_statements(payroll, workers)
        print_distribution(managers)

    exit_code = 0
    if args.pay_workers:
        result = ops.execute("pay_all_workers")
        if result.success:
            print(f"\n  ✓ Paid {len(result.data)} workers")
        else:
            print(f"\n  ✗ Worker payroll failed: {result.error}")
            exit_code = 1
    if args.pay_managers:
        result = ops.execute("pay_all_managers")
        if result.success:
            print(f"  ✓ Paid {len(result.data)} managers")
        else:
            print(f"  ✗ Manager payroll failed: {result.error}")
            exit_code = 1

    logger.info("reconcile_finished", log=str(args.log), exit_code=exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
