#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from typing import Optional

from inventory_ledger import __version__
from inventory_ledger.common.config import get_settings
from inventory_ledger.common.logging import init_structured_logging
from inventory_ledger.errors import Unavailable
from inventory_ledger.ledger.aggregation import aggregate, previous_window
from inventory_ledger.ledger.firestore import FirestoreLedgerSink
from inventory_ledger.ledger.insights import profit_by_item
from inventory_ledger.persistence.firebase_client import get_firestore_client


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError("Expected YYYY-MM-DD (e.g. 2025-12-01)") from e


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Print the dashboard aggregation (series + summary) for a tenant's ledger window."
    )
    parser.add_argument("--tenant-id", required=True, help="Tenant id (tid)")
    parser.add_argument("--from", dest="start", required=True, type=_parse_date, help="Window start (inclusive)")
    parser.add_argument("--to", dest="end", required=True, type=_parse_date, help="Window end (inclusive)")
    parser.add_argument("--include-purchases", action="store_true", help="Also report purchase cost total.")
    parser.add_argument("--by-item", action="store_true", help="Append the per-item profit map.")
    args = parser.parse_args(argv)
    if args.end < args.start:
        parser.error("--to must not be before --from")

    settings = get_settings()
    init_structured_logging(service=settings.SERVICE_NAME, env=settings.ENV, version=__version__, level=settings.LOG_LEVEL)

    # One read covers both the window and the growth baseline before it.
    prev_start, _ = previous_window(args.start, args.end)
    try:
        sink = FirestoreLedgerSink(get_firestore_client(), tenant_id=args.tenant_id)
        entries = sink.list_entries(prev_start, args.end)
    except Unavailable as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    report = aggregate(entries, args.start, args.end, include_purchases=args.include_purchases).to_dict()
    if args.by_item:
        report["items"] = [p.to_dict() for p in profit_by_item(entries, args.start, args.end)]
    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
