"""
Report subscription mirror conflicts and credit ledger drift.

Read-only. Exits 1 when any issue is found, 2 when the database is unreachable.
"""
from __future__ import annotations

import argparse
import json
import os
from typing import List, Optional

from maxjoboffers.core.config import validate_config
from maxjoboffers.core.database import check_connection, init_engine
from maxjoboffers.core.logging import configure_logging
from maxjoboffers.features.billing.reconciliation import run_reconciliation


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Check subscription records and credit balances for drift.")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print the report as JSON.")
    args = parser.parse_args(argv)

    configure_logging(os.getenv("ENV", "development"))
    validate_config(strict=False)
    if args.database_url:
        init_engine(args.database_url)
    if not check_connection():
        print("database unreachable")
        return 2

    report = run_reconciliation()
    if args.as_json:
        print(json.dumps(report, default=str, sort_keys=True))
    else:
        print(f"issues_found={report['issues_found']}")
        for issue in report["subscription_conflicts"] + report["ledger_drift"]:
            print(issue)
    return 1 if report["issues_found"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
