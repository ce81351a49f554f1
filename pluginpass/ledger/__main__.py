"""
CLI entry point for the purchase ledger.

Usage:
    python -m pluginpass.ledger ingest events/*.json --ledger purchases.xlsx
    python -m pluginpass.ledger verify --email a@x.com --code INV-9 --plugin Grid
    python -m pluginpass.ledger verify --email a@x.com --code INV-9 --user-id u1 --bind
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import DEFAULT_CONFIG_PATH, load_config
from .errors import LedgerError
from .ingest import PurchaseIngestor
from .models import VerifyQuery
from .sheet_store import XlsxLedgerStore
from .stripe_events import is_event_id, normalize_stripe_event
from .verifier import PurchaseVerifier


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pluginpass.ledger",
        description="Purchase ledger - reconcile payment events and verify purchases",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="Ledger config file (default: module's ledger_config.json)",
    )
    parser.add_argument(
        "--ledger",
        default=None,
        metavar="FILE",
        help="Ledger workbook (XLSX); overrides ledger_path from config",
    )
    parser.add_argument(
        "--sheet",
        default=None,
        help="Worksheet name; overrides sheet_name from config",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Apply Stripe event JSON files to the ledger")
    ingest.add_argument("events", nargs="+", metavar="FILE", help="Stripe event JSON files")

    verify = sub.add_parser("verify", help="Verify (and optionally claim) a purchase")
    verify.add_argument("--email", required=True)
    verify.add_argument("--code", required=True, help="Access code (receipt / invoice)")
    verify.add_argument("--plugin", default="", help="Plugin name filter")
    verify.add_argument("--user-id", default="", help="User id to bind the purchase to")
    verify.add_argument("--bind", action="store_true", help="Explicitly request binding")

    return parser


def _run_ingest(args, ingestor: PurchaseIngestor, config) -> int:
    failures = 0
    for pattern in args.events:
        path = Path(pattern)
        if path.exists():
            paths = [path]
        elif path.is_absolute():
            paths = []
        else:
            paths = sorted(Path(".").glob(pattern))
        if not paths:
            print(f"Error: Event file not found: {pattern}", file=sys.stderr)
            failures += 1
            continue

        for path in paths:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    event = json.load(f)
            except (OSError, ValueError) as e:
                print(f"{path}: error: {e}", file=sys.stderr)
                failures += 1
                continue
            if not isinstance(event, dict):
                print(f"{path}: error: event is not a JSON object", file=sys.stderr)
                failures += 1
                continue

            event_id = event.get("id")
            if not is_event_id(event_id):
                print(f"{path}: skipped (no valid event id)")
                continue

            fact = normalize_stripe_event(event, config)
            if fact is None:
                print(f"{path}: skipped ({event.get('type', 'unknown_type')})")
                continue

            try:
                result = ingestor.ingest(fact, source=event_id)
            except LedgerError as e:
                print(f"{path}: error: {e}", file=sys.stderr)
                failures += 1
                continue

            if result.written:
                print(f"{path}: {result.upsert.mode.value} {result.upsert.transaction_id}")
            else:
                print(f"{path}: skipped ({result.skipped})")
    return 1 if failures else 0


def _run_verify(args, verifier: PurchaseVerifier) -> int:
    query = VerifyQuery.build(
        email=args.email,
        access_code=args.code,
        plugin_filter=args.plugin,
        binding_candidate=args.user_id,
        explicit_bind=args.bind,
        bypass_cache=True,
    )
    try:
        decision = verifier.verify(query)
    except LedgerError as e:
        print(json.dumps({"ok": False, "error": str(e)}))
        return 1
    print(json.dumps(decision.to_dict()))
    return 0


def main(argv=None):
    args = _build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(config_path)
        if args.ledger:
            config.ledger_path = args.ledger
        if args.sheet:
            config.sheet_name = args.sheet

        store = XlsxLedgerStore(
            config.ledger_path,
            sheet_name=config.sheet_name,
            create=args.command == "ingest",
            add_missing_columns=args.command == "ingest",
        )

        if args.command == "ingest":
            code = _run_ingest(args, PurchaseIngestor(store, config=config), config)
        else:
            code = _run_verify(args, PurchaseVerifier(store, config=config))

    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
