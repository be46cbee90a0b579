"""
CSV import pipeline: suggest mapping -> preview -> commit.

Every operation is stateless given its inputs. ``commit_import`` never
trusts an earlier preview and re-validates everything before writing.
Rows are independent: a bad row is reported and skipped, the rest are
imported.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from stocktracker.config import settings
from stocktracker.context import RequestContext
from stocktracker.exceptions import EmptyFileError, StoreUnavailableError, TooManyRowsError
from stocktracker.models import Transaction
from stocktracker.services import field_mapping as fm
from stocktracker.services.cache import OwnerCache, portfolio_cache
from stocktracker.services.csv_parser import CsvRowData
from stocktracker.services.portfolio_calculator import SharesLedger
from stocktracker.services.row_validator import (
    FieldError,
    TransactionPreviewRow,
    TransactionRowValidator,
    normalize_symbol,
    sort_key,
)
from stocktracker.services.ticker_resolver import MemoizingResolver, TickerResolver
from stocktracker.services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)

SYSTEM_ERROR_ROW = 0


@dataclass
class ImportPreview:
    valid_rows: List[TransactionPreviewRow] = field(default_factory=list)
    error_rows: List[TransactionPreviewRow] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.valid_rows) + len(self.error_rows)

    @property
    def valid_count(self) -> int:
        return len(self.valid_rows)

    @property
    def error_count(self) -> int:
        return len(self.error_rows)


@dataclass
class ImportResult:
    imported_count: int = 0
    skipped_count: int = 0
    errors: List[FieldError] = field(default_factory=list)
    imported_transactions: List[Transaction] = field(default_factory=list)


def check_sell_coverage(previews: List[TransactionPreviewRow], ledger: SharesLedger) -> None:
    """
    Reject SELL rows that would sell more shares than are held.

    Candidates are checked in chronological order (BUYs first on the same
    day) against stored history plus rows of this batch already accepted,
    so a file listed newest-first validates the same as oldest-first.
    """
    for preview in sorted((p for p in previews if p.valid), key=sort_key):
        if preview.type == "SELL":
            available = ledger.available(preview.symbol, preview.transaction_date)
            if preview.shares > available:
                preview.add_error(
                    fm.SHARES,
                    f"Cannot sell {preview.shares.normalize():f} shares of {preview.symbol}: "
                    f"only {max(available, 0).normalize():f} held as of {preview.transaction_date.isoformat()}",
                    str(preview.shares),
                )
                continue
        ledger.add(preview.symbol, preview.transaction_date, preview.type, preview.shares)


class TransactionImportEngine:
    """Orchestrates parse -> map -> validate -> commit for one owner."""

    def __init__(self, store: TransactionStore, resolver: TickerResolver, max_rows: Optional[int] = None,
                 cache: OwnerCache = portfolio_cache):
        self.store = store
        self.resolver = resolver
        self.cache = cache
        self.max_rows = max_rows or settings.max_import_rows

    def suggest_mapping(self, headers: Sequence[str]) -> fm.MappingSuggestion:
        return fm.suggest_mapping(headers)

    def _validate(
        self,
        rows: Sequence[CsvRowData],
        field_mappings: Dict[str, str],
        ctx: RequestContext,
    ) -> List[TransactionPreviewRow]:
        if not rows:
            raise EmptyFileError("No rows to import")
        if len(rows) > self.max_rows:
            raise TooManyRowsError(
                f"Import has {len(rows)} rows. Maximum is {self.max_rows} rows",
                details={"rowCount": len(rows), "maxRows": self.max_rows},
            )
        columns = fm.resolve_mapping(field_mappings)

        # One lookup per distinct symbol for the whole batch
        resolver = MemoizingResolver(self.resolver)
        symbols = (normalize_symbol(row.get(columns[fm.SYMBOL]), row.get(columns[fm.EXCHANGE])) for row in rows)
        resolver.prefetch(symbol for symbol in symbols if symbol is not None)

        validator = TransactionRowValidator(resolver, ctx.today)
        previews = [validator.validate(row, columns) for row in rows]
        check_sell_coverage(previews, SharesLedger(self.store.list_for_owner(ctx.owner_id)))
        return previews

    def preview_import(
        self,
        rows: Sequence[CsvRowData],
        field_mappings: Dict[str, str],
        ctx: RequestContext,
    ) -> ImportPreview:
        previews = self._validate(rows, field_mappings, ctx)
        preview = ImportPreview(
            valid_rows=[p for p in previews if p.valid],
            error_rows=[p for p in previews if not p.valid],
        )
        logger.info(
            f"[ImportEngine] Preview for {ctx.owner_id}: {preview.total_rows} rows, "
            f"{preview.valid_count} valid, {preview.error_count} invalid"
        )
        return preview

    def commit_import(
        self,
        rows: Sequence[CsvRowData],
        field_mappings: Dict[str, str],
        ctx: RequestContext,
    ) -> ImportResult:
        try:
            previews = self._validate(rows, field_mappings, ctx)
        except StoreUnavailableError as e:
            return self._systemic_failure(len(rows), e)

        result = ImportResult()
        for preview in previews:
            result.errors.extend(preview.errors)

        drafts = [(p.row_number, p.to_draft()) for p in previews if p.valid]
        if drafts:
            try:
                batch = self.store.add_many(ctx.owner_id, drafts)
            except StoreUnavailableError as e:
                return self._systemic_failure(len(rows), e)
            result.imported_transactions = [tx for _, tx in batch.created]
            if batch.created:
                self.cache.evict_owner(ctx.owner_id)
            result.errors.extend(
                FieldError(row_number=f.row_number, field=None, message=f.message) for f in batch.failures
            )

        result.errors.sort(key=lambda e: e.row_number)
        result.imported_count = len(result.imported_transactions)
        result.skipped_count = len(rows) - result.imported_count
        logger.info(
            f"[ImportEngine] Import for {ctx.owner_id}: {result.imported_count} imported, "
            f"{result.skipped_count} skipped"
        )
        return result

    @staticmethod
    def _systemic_failure(row_count: int, error: StoreUnavailableError) -> ImportResult:
        logger.error(f"[ImportEngine] Import aborted, store unavailable: {error.message}")
        return ImportResult(
            imported_count=0,
            skipped_count=row_count,
            errors=[FieldError(
                row_number=SYSTEM_ERROR_ROW,
                field=None,
                message=f"Import failed: {error.message}. No transactions were imported",
            )],
        )
