#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import sys
import threading
from typing import Optional

from inventory_ledger import __version__
from inventory_ledger.common.config import get_settings
from inventory_ledger.common.logging import bind_run_id, init_structured_logging
from inventory_ledger.errors import InvalidInput, Unavailable
from inventory_ledger.ledger.firestore import FirestoreCatalog, FirestoreLedgerSink, FirestoreMovementSource
from inventory_ledger.ledger.migration import BackfillMigrator, DryRunLedgerSink, LedgerSink, cancel_on_signals
from inventory_ledger.ledger.models import MigrationScope
from inventory_ledger.persistence.firebase_client import get_firestore_client


def _positive_float(value: str) -> float:
    try:
        v = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError("Expected a number of seconds") from e
    if v <= 0:
        raise argparse.ArgumentTypeError("Must be > 0")
    return v


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Backfill ledger entries from historical stock movements (idempotent)."
    )
    parser.add_argument("--tenant-id", required=True, help="Tenant id (tid)")
    parser.add_argument(
        "--scope",
        required=True,
        choices=[s.value for s in MigrationScope],
        help="Which movements to migrate: bare products or kits.",
    )
    parser.add_argument("--direction", default="all", choices=["all", "in", "out"], help="Movement direction filter.")
    parser.add_argument("--batch-size", type=int, default=None, help="Movements per batch (default: MIGRATION_BATCH_SIZE).")
    parser.add_argument(
        "--deadline-s",
        type=_positive_float,
        default=None,
        help="Stop before the next batch once this many seconds have passed (default: MIGRATION_DEADLINE_S).",
    )
    parser.add_argument(
        "--write",
        action="store_true",
        help="Write entries to tenants/{tid}/ledger_entries. Default is dry-run.",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    init_structured_logging(service=settings.SERVICE_NAME, env=settings.ENV, version=__version__, level=settings.LOG_LEVEL)

    cancel = threading.Event()
    deadline_s = args.deadline_s if args.deadline_s is not None else settings.MIGRATION_DEADLINE_S
    with bind_run_id():
        try:
            db = get_firestore_client()
            real_sink = FirestoreLedgerSink(db, tenant_id=args.tenant_id)
            sink: LedgerSink = real_sink if args.write else DryRunLedgerSink(real_sink)
            migrator = BackfillMigrator(
                FirestoreCatalog(db, tenant_id=args.tenant_id),
                sink,
                tenant_id=args.tenant_id,
                batch_size=args.batch_size,
            )
            # Ctrl-C / SIGTERM stop the run at the next batch boundary; a second one aborts at once.
            with cancel_on_signals(cancel):
                result = migrator.run(
                    FirestoreMovementSource(db, tenant_id=args.tenant_id),
                    args.scope,
                    direction=args.direction,
                    cancel=cancel,
                    deadline_s=deadline_s,
                )
        except KeyboardInterrupt:
            print("Interrupted.", file=sys.stderr)
            return 130
        except (InvalidInput, Unavailable) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    if not args.write and isinstance(sink, DryRunLedgerSink):
        print(f"Dry run: {len(sink.entries)} entries would be written. Re-run with --write to persist.")
    if result.aborted and cancel.is_set():
        return 130
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
