"""
Manual transaction management, ticker validation and CSV export.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Dict, List, Optional

import pandas as pd

from stocktracker.context import RequestContext
from stocktracker.exceptions import (
    StockTrackerError,
    TickerNotFoundError,
    TransactionValidationError,
)
from stocktracker.models import Transaction
from stocktracker.services import field_mapping as fm
from stocktracker.services.cache import OwnerCache, portfolio_cache
from stocktracker.services.import_engine import check_sell_coverage
from stocktracker.services.portfolio_calculator import SharesLedger
from stocktracker.services.row_validator import (
    SYMBOL_PATTERN,
    TransactionDraft,
    TransactionRowValidator,
)
from stocktracker.services.ticker_resolver import TickerResolver
from stocktracker.services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["Date", "Symbol", "Type", "Quantity", "Price", "Fee", "Total", "Notes"]


@dataclass
class TickerValidation:
    valid: bool
    symbol: str
    company_name: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class TransactionInput:
    """Manually entered transaction, before validation."""
    type: str
    symbol: str
    transaction_date: date
    shares: Decimal
    price_per_share: Decimal
    broker_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    exchange: Optional[str] = None

    def as_values(self) -> Dict[str, Optional[str]]:
        return {
            fm.TYPE: self.type,
            fm.SYMBOL: self.symbol,
            fm.EXCHANGE: self.exchange,
            fm.TRANSACTION_DATE: self.transaction_date.isoformat(),
            fm.SHARES: str(self.shares),
            fm.PRICE_PER_SHARE: str(self.price_per_share),
            fm.BROKER_FEE: str(self.broker_fee) if self.broker_fee is not None else None,
            fm.NOTES: self.notes,
        }


def _format_decimal(value) -> str:
    if value is None:
        return ""
    return f"{Decimal(value).normalize():f}"


def _format_date(value: date) -> str:
    return f"{value.month}/{value.day}/{value.year}"


class TransactionService:
    """Single-record operations share row validation with the CSV import."""

    def __init__(self, store: TransactionStore, resolver: TickerResolver, cache: OwnerCache = portfolio_cache):
        self.store = store
        self.resolver = resolver
        self.cache = cache

    def list_transactions(self, ctx: RequestContext) -> List[Transaction]:
        """Newest first."""
        return sorted(
            self.store.list_for_owner(ctx.owner_id),
            key=lambda tx: (tx.transaction_date, tx.id),
            reverse=True,
        )

    def get_transaction(self, ctx: RequestContext, transaction_id: int) -> Transaction:
        return self.store.get(ctx.owner_id, transaction_id)

    def _validated_draft(self, ctx: RequestContext, data: TransactionInput,
                         replacing: Optional[Transaction] = None) -> TransactionDraft:
        validator = TransactionRowValidator(self.resolver, ctx.today)
        preview = validator.validate_values(0, data.as_values())
        if preview.valid:
            exclude_id = replacing.id if replacing is not None else None
            history = [tx for tx in self.store.list_for_owner(ctx.owner_id) if tx.id != exclude_id]
            check_sell_coverage([preview], SharesLedger(history))
            if preview.valid:
                self._check_later_sells(history, preview, replacing)
        if not preview.valid:
            raise TransactionValidationError([
                {"field": e.field, "message": e.message, "rejectedValue": e.rejected_value}
                for e in preview.errors
            ])
        return preview.to_draft()

    @staticmethod
    def _check_later_sells(history: List[Transaction], preview,
                           replacing: Optional[Transaction] = None) -> None:
        """
        The new record must not leave an existing later SELL uncovered.

        When an update moves a record to another symbol, the symbol it
        leaves is checked too.
        """
        ledger = SharesLedger(history)
        ledger.add(preview.symbol, preview.transaction_date, preview.type, preview.shares)
        if not ledger.is_consistent(preview.symbol):
            preview.add_error(
                fm.SHARES,
                f"Change would leave later sells of {preview.symbol} exceeding shares held",
                str(preview.shares),
            )
        if replacing is not None and replacing.symbol != preview.symbol:
            if not ledger.is_consistent(replacing.symbol):
                preview.add_error(
                    fm.SYMBOL,
                    f"Change would leave later sells of {replacing.symbol} exceeding shares held",
                    preview.symbol,
                )

    def create_transaction(self, ctx: RequestContext, data: TransactionInput) -> Transaction:
        draft = self._validated_draft(ctx, data)
        tx = self.store.add(ctx.owner_id, draft)
        self.cache.evict_owner(ctx.owner_id)
        return tx

    def update_transaction(self, ctx: RequestContext, transaction_id: int, data: TransactionInput) -> Transaction:
        existing = self.store.get(ctx.owner_id, transaction_id)
        draft = self._validated_draft(ctx, data, replacing=existing)
        tx = self.store.update(ctx.owner_id, transaction_id, draft)
        self.cache.evict_owner(ctx.owner_id)
        return tx

    def delete_transaction(self, ctx: RequestContext, transaction_id: int) -> None:
        tx = self.store.get(ctx.owner_id, transaction_id)
        if tx.type == "BUY":
            remaining = [t for t in self.store.list_for_owner(ctx.owner_id) if t.id != transaction_id]
            if not SharesLedger(remaining).is_consistent(tx.symbol):
                raise TransactionValidationError([{
                    "field": fm.SHARES,
                    "message": f"Deleting this BUY would leave later sells of {tx.symbol} exceeding shares held",
                    "rejectedValue": str(transaction_id),
                }])
        self.store.delete(ctx.owner_id, transaction_id)
        self.cache.evict_owner(ctx.owner_id)

    def validate_ticker(self, symbol: Optional[str]) -> TickerValidation:
        symbol = (symbol or "").strip().upper()
        if not symbol:
            return TickerValidation(valid=False, symbol=symbol, error_message="Symbol is required")
        if not SYMBOL_PATTERN.match(symbol):
            return TickerValidation(valid=False, symbol=symbol, error_message=f"Invalid symbol format: {symbol}")
        try:
            quote = self.resolver.lookup(symbol)
        except TickerNotFoundError:
            return TickerValidation(valid=False, symbol=symbol,
                                    error_message=f"Ticker symbol '{symbol}' not found")
        except StockTrackerError as e:
            return TickerValidation(valid=False, symbol=symbol,
                                    error_message=f"Unable to validate ticker: {e.message}")
        return TickerValidation(valid=True, symbol=symbol, company_name=quote.company_name)

    def export_csv(self, ctx: RequestContext) -> str:
        """Export as CSV, newest first."""
        transactions = self.list_transactions(ctx)
        df = pd.DataFrame(
            [
                {
                    "Date": _format_date(tx.transaction_date),
                    "Symbol": tx.symbol,
                    "Type": tx.type,
                    "Quantity": _format_decimal(tx.shares),
                    "Price": _format_decimal(tx.price_per_share),
                    "Fee": _format_decimal(tx.broker_fee),
                    "Total": _format_decimal(tx.total_amount),
                    "Notes": tx.notes or "",
                }
                for tx in transactions
            ],
            columns=EXPORT_COLUMNS,
        )
        buffer = StringIO()
        df.to_csv(buffer, index=False, lineterminator="\n")
        logger.info(f"[TransactionService] Exported {len(transactions)} transactions for {ctx.owner_id}")
        return buffer.getvalue()
