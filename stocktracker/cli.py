#!/usr/bin/env python3
"""
Command line interface for Stock Tracker

    stocktracker serve [--host HOST] [--port PORT] [--reload]
    stocktracker import FILE --owner ID [--map COLUMN=field ...] [--yes]
    stocktracker export --owner ID [--output FILE]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from stocktracker.config import configure_logging, settings
from stocktracker.context import RequestContext
from stocktracker.database import SessionLocal, init_db_sync
from stocktracker.exceptions import StockTrackerError
from stocktracker.services import import_flow as flow
from stocktracker.services.csv_parser import parse_csv
from stocktracker.services.import_engine import TransactionImportEngine
from stocktracker.services.ticker_resolver import YahooTickerResolver
from stocktracker.services.transaction_service import TransactionService
from stocktracker.services.transaction_store import SqlTransactionStore

logger = logging.getLogger(__name__)


def _print_mapping(state: flow.MappingStep) -> None:
    print(f"\nColumns in {state.file_name}:")
    for header in state.headers:
        canonical = state.mapping.get(header)
        confidence = state.suggestion.confidence_scores.get(header)
        suffix = f"  (suggested {state.suggestion.suggested_mappings[header]}, {confidence:.0%})" \
            if header in state.suggestion.suggested_mappings and canonical is None else ""
        print(f"  {header:<24} -> {canonical or '-'}{suffix}")


def _print_preview(state: flow.PreviewStep) -> None:
    preview = state.preview
    print(f"\n{preview.total_rows} rows: {preview.valid_count} valid, {preview.error_count} with errors")
    for row in preview.error_rows:
        for error in row.errors:
            print(f"  row {error.row_number}: [{error.field}] {error.message}")


def run_import(path: Path, owner_id: str, overrides: List[str], assume_yes: bool) -> int:
    state: flow.ImportState = flow.start()
    try:
        parsed = parse_csv(path.read_bytes())
    except StockTrackerError as e:
        state = flow.upload_failed(state, e.message)
        print(f"Upload failed: {state.error}", file=sys.stderr)
        return 1

    init_db_sync()
    db = SessionLocal()
    try:
        engine = TransactionImportEngine(SqlTransactionStore(db), YahooTickerResolver())
        ctx = RequestContext(owner_id=owner_id)

        state = flow.file_parsed(state, path.name, parsed, engine.suggest_mapping(parsed.headers))
        for override in overrides:
            column, _, canonical = override.partition("=")
            state = flow.mapping_changed(state, column.strip(), canonical.strip() or None)
        _print_mapping(state)

        missing = flow.missing_required(state)
        if missing:
            print(f"Missing required mappings: {', '.join(missing)}. Use --map COLUMN=field", file=sys.stderr)
            return 2

        state = flow.preview_ready(state, engine.preview_import(state.rows, state.mapping, ctx))
        _print_preview(state)
        if state.preview.valid_count == 0:
            print("Nothing to import", file=sys.stderr)
            return 1
        if not assume_yes and input(f"Import {state.preview.valid_count} rows? [y/N] ").strip().lower() != "y":
            print("Aborted")
            return 1

        state = flow.import_started(state)
        mapping_step = state.preview_step.mapping_step
        result = engine.commit_import(mapping_step.rows, mapping_step.mapping, ctx)
        state = flow.import_finished(state, result)
    except StockTrackerError as e:
        print(f"Import failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(f"\nImported {state.result.imported_count} transactions, skipped {state.result.skipped_count}")
    for error in state.result.errors:
        print(f"  row {error.row_number}: {error.message}")
    return 0 if state.result.imported_count > 0 else 1


def run_export(owner_id: str, output: Optional[Path]) -> int:
    init_db_sync()
    db = SessionLocal()
    try:
        service = TransactionService(SqlTransactionStore(db), YahooTickerResolver())
        csv_text = service.export_csv(RequestContext(owner_id=owner_id))
    finally:
        db.close()
    if output:
        output.write_text(csv_text, encoding="utf-8")
        print(f"Wrote {output}")
    else:
        sys.stdout.write(csv_text)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Command line interface"""
    parser = argparse.ArgumentParser(description="Stock Tracker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)
    serve.add_argument("--reload", action="store_true")

    importer = subparsers.add_parser("import", help="Import transactions from a CSV file")
    importer.add_argument("file", type=Path)
    importer.add_argument("--owner", required=True, help="Owner id to import for")
    importer.add_argument("--map", action="append", default=[], metavar="COLUMN=field",
                          help="Override a column mapping (repeatable; field 'skip' ignores the column)")
    importer.add_argument("--yes", "-y", action="store_true", help="Import without confirmation")

    exporter = subparsers.add_parser("export", help="Export transactions as CSV")
    exporter.add_argument("--owner", required=True)
    exporter.add_argument("--output", "-o", type=Path)

    args = parser.parse_args(argv)

    if args.command == "serve":
        uvicorn.run(
            "stocktracker.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return 0

    configure_logging()
    if args.command == "import":
        return run_import(args.file, args.owner, args.map, args.yes)
    return run_export(args.owner, args.output)


if __name__ == "__main__":
    sys.exit(main())
