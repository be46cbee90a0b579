"""
Row validation for transaction imports and manual entry.

Each raw row is checked field by field; every problem is collected so a
rejected row can be shown with all of its errors at once. Invalid rows
are returned alongside valid ones, never dropped.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from stocktracker.exceptions import PriceLookupError, StockTrackerError, TickerNotFoundError
from stocktracker.services import field_mapping as fm
from stocktracker.services.csv_parser import CsvRowData
from stocktracker.services.ticker_resolver import TickerResolver

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500
MAX_SYMBOL_LENGTH = 10

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.\-^=]{1,10}$")

# Quantities and money are stored as Numeric(19, 4)
STORED_PLACES = Decimal("0.0001")
MAX_STORED_VALUE = Decimal(10) ** 15

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d-%b-%Y",
    "%Y%m%d",
    "%Y/%m/%d",
)

TYPE_SYNONYMS = {
    "buy": "BUY", "b": "BUY", "bot": "BUY", "bought": "BUY", "purchase": "BUY", "you bought": "BUY",
    "sell": "SELL", "s": "SELL", "sld": "SELL", "sold": "SELL", "sale": "SELL", "you sold": "SELL",
}

# Exchange code -> Yahoo symbol suffix. US venues need none.
EXCHANGE_SUFFIXES = {
    "LSE": ".L", "LSEETF": ".L", "LON": ".L",
    "SEHK": ".HK", "HKG": ".HK",
    "TSE": ".TO", "TSX": ".TO",
    "ASX": ".AX",
    "XETRA": ".DE",
    "FRA": ".F",
    "EPA": ".PA",
    "SIX": ".SW",
    "AMS": ".AS",
    "EBR": ".BR",
    "MIL": ".MI",
    "MCE": ".MC",
    "CSE": ".CO",
    "STO": ".ST",
    "OSE": ".OL",
    "SGX": ".SI",
    "TYO": ".T",
    "NASDAQ": "", "NYSE": "", "AMEX": "", "ARCA": "",
}


@dataclass
class FieldError:
    row_number: int
    field: Optional[str]
    message: str
    rejected_value: Optional[str] = None


@dataclass
class TransactionDraft:
    """A fully parsed, typed transaction ready to be stored."""
    type: str
    symbol: str
    transaction_date: date
    shares: Decimal
    price_per_share: Decimal
    broker_fee: Decimal = Decimal("0")
    notes: Optional[str] = None
    company_name: Optional[str] = None


@dataclass
class TransactionPreviewRow:
    row_number: int
    type: Optional[str] = None
    symbol: Optional[str] = None
    company_name: Optional[str] = None
    transaction_date: Optional[date] = None
    shares: Optional[Decimal] = None
    price_per_share: Optional[Decimal] = None
    broker_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, field_name: Optional[str], message: str, rejected_value: Optional[str] = None) -> None:
        self.errors.append(FieldError(self.row_number, field_name, message, rejected_value))

    def to_draft(self) -> TransactionDraft:
        if not self.valid:
            raise ValueError(f"Row {self.row_number} is not valid")
        return TransactionDraft(
            type=self.type,
            symbol=self.symbol,
            transaction_date=self.transaction_date,
            shares=self.shares,
            price_per_share=self.price_per_share,
            broker_fee=self.broker_fee,
            notes=self.notes,
            company_name=self.company_name,
        )


def _blank(value: Optional[str]) -> bool:
    return value is None or str(value).strip() == ""


def parse_decimal(raw: str, strip_chars: str = ",") -> Optional[Decimal]:
    """Parse a decimal, ignoring the given characters; None when not a finite number."""
    cleaned = str(raw).strip()
    for ch in strip_chars:
        cleaned = cleaned.replace(ch, "")
    # Accounting style negatives: (12.5)
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = "-" + cleaned[1:-1]
    try:
        value = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def to_stored_precision(value: Decimal) -> Optional[Decimal]:
    """Round to the 4 places the store keeps; None when too large to store."""
    if abs(value) >= MAX_STORED_VALUE:
        return None
    return value.quantize(STORED_PLACES, rounding=ROUND_HALF_UP)


def parse_date(raw: str) -> Optional[date]:
    text = str(raw).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_type(raw: str) -> Optional[str]:
    return TYPE_SYNONYMS.get(" ".join(str(raw).strip().lower().split()))


def apply_exchange_suffix(symbol: str, exchange: Optional[str]) -> str:
    if _blank(exchange) or "." in symbol:
        return symbol
    suffix = EXCHANGE_SUFFIXES.get(str(exchange).strip().upper())
    return symbol + suffix if suffix else symbol


def normalize_symbol(raw: Optional[str], exchange: Optional[str] = None) -> Optional[str]:
    """Uppercased symbol with its exchange suffix; None when blank or malformed."""
    if _blank(raw):
        return None
    symbol = apply_exchange_suffix(str(raw).strip().upper(), exchange)
    if len(symbol) > MAX_SYMBOL_LENGTH or not SYMBOL_PATTERN.match(symbol):
        return None
    return symbol


class TransactionRowValidator:
    """Validates raw rows against a canonical field mapping."""

    def __init__(self, resolver: TickerResolver, today: date):
        self.resolver = resolver
        self.today = today

    def validate(self, row: CsvRowData, columns: Dict[str, Optional[str]]) -> TransactionPreviewRow:
        """
        Validate one CSV row.

        ``columns`` maps canonical field -> CSV column (see
        ``field_mapping.resolve_mapping``); unmapped fields map to None.
        """
        values = {canonical: row.get(column) for canonical, column in columns.items()}
        type_mapped = columns.get(fm.TYPE) is not None
        return self.validate_values(row.row_number, values, type_mapped=type_mapped)

    def validate_values(
        self,
        row_number: int,
        values: Dict[str, Optional[str]],
        type_mapped: bool = True,
    ) -> TransactionPreviewRow:
        """Validate canonical field -> raw string values."""
        preview = TransactionPreviewRow(row_number=row_number)

        explicit_type = self._check_type(preview, values.get(fm.TYPE), type_mapped)
        self._check_symbol(preview, values.get(fm.SYMBOL), values.get(fm.EXCHANGE))
        self._check_date(preview, values.get(fm.TRANSACTION_DATE))
        self._check_shares(preview, values.get(fm.SHARES), explicit_type)
        self._check_price(preview, values.get(fm.PRICE_PER_SHARE))
        self._check_fee(preview, values.get(fm.BROKER_FEE))
        self._check_notes(preview, values.get(fm.NOTES))

        if preview.errors:
            logger.debug(f"[RowValidator] Row {row_number} rejected: {[e.message for e in preview.errors]}")
        return preview

    def _check_type(self, preview: TransactionPreviewRow, raw: Optional[str], mapped: bool) -> Optional[str]:
        if not mapped or _blank(raw):
            return None
        tx_type = normalize_type(raw)
        if tx_type is None:
            preview.add_error(fm.TYPE, f"Invalid transaction type '{raw}'. Expected BUY or SELL", raw)
            return None
        preview.type = tx_type
        return tx_type

    def _check_symbol(self, preview: TransactionPreviewRow, raw: Optional[str], exchange: Optional[str]) -> None:
        if _blank(raw):
            preview.add_error(fm.SYMBOL, "Symbol is required", raw)
            return
        symbol = normalize_symbol(raw, exchange)
        if symbol is None:
            preview.add_error(fm.SYMBOL, f"Invalid symbol format: {str(raw).strip().upper()}", raw)
            return
        preview.symbol = symbol
        try:
            quote = self.resolver.lookup(symbol)
        except TickerNotFoundError:
            preview.add_error(fm.SYMBOL, f"Ticker symbol '{symbol}' not found", raw)
            return
        except PriceLookupError as e:
            preview.add_error(fm.SYMBOL, f"Unable to verify ticker symbol '{symbol}': {e.message}", raw)
            return
        except StockTrackerError as e:
            preview.add_error(fm.SYMBOL, e.message, raw)
            return
        preview.company_name = quote.company_name

    def _check_date(self, preview: TransactionPreviewRow, raw: Optional[str]) -> None:
        if _blank(raw):
            preview.add_error(fm.TRANSACTION_DATE, "Transaction date is required", raw)
            return
        parsed = parse_date(raw)
        if parsed is None:
            preview.add_error(
                fm.TRANSACTION_DATE,
                f"Invalid date format: {raw}. Expected formats: YYYY-MM-DD, MM/DD/YYYY, DD-MMM-YYYY",
                raw,
            )
            return
        if parsed > self.today:
            preview.add_error(fm.TRANSACTION_DATE, "Transaction date cannot be in the future", raw)
            return
        preview.transaction_date = parsed

    def _check_shares(self, preview: TransactionPreviewRow, raw: Optional[str], explicit_type: Optional[str]) -> None:
        if _blank(raw):
            preview.add_error(fm.SHARES, "Shares is required", raw)
            return
        shares = parse_decimal(raw)
        if shares is None:
            preview.add_error(fm.SHARES, f"Invalid number format for shares: {raw}", raw)
            return
        if shares == 0:
            preview.add_error(fm.SHARES, "Shares cannot be zero", raw)
            return
        shares = to_stored_precision(shares)
        if shares is None:
            preview.add_error(fm.SHARES, f"Shares is out of range: {raw}", raw)
            return
        if shares == 0:
            preview.add_error(fm.SHARES, f"Shares must be at least {STORED_PLACES}", raw)
            return

        if shares < 0:
            if explicit_type == "BUY":
                preview.add_error(fm.SHARES, "Shares cannot be negative for a BUY transaction", raw)
                return
            shares = -shares
            if explicit_type is None and not any(e.field == fm.TYPE for e in preview.errors):
                preview.type = "SELL"
        elif explicit_type is None and not any(e.field == fm.TYPE for e in preview.errors):
            preview.type = "BUY"
        preview.shares = shares

    def _check_price(self, preview: TransactionPreviewRow, raw: Optional[str]) -> None:
        if _blank(raw):
            preview.add_error(fm.PRICE_PER_SHARE, "Price per share is required", raw)
            return
        price = parse_decimal(raw, strip_chars=",$")
        if price is None:
            preview.add_error(fm.PRICE_PER_SHARE, f"Invalid number format for price: {raw}", raw)
            return
        if price <= 0:
            preview.add_error(fm.PRICE_PER_SHARE, "Price per share must be greater than zero", raw)
            return
        price = to_stored_precision(price)
        if price is None:
            preview.add_error(fm.PRICE_PER_SHARE, f"Price per share is out of range: {raw}", raw)
            return
        if price == 0:
            preview.add_error(fm.PRICE_PER_SHARE, f"Price per share must be at least {STORED_PLACES}", raw)
            return
        preview.price_per_share = price

    def _check_fee(self, preview: TransactionPreviewRow, raw: Optional[str]) -> None:
        if _blank(raw):
            preview.broker_fee = Decimal("0")
            return
        fee = parse_decimal(raw, strip_chars=",$")
        if fee is None:
            preview.add_error(fm.BROKER_FEE, f"Invalid number format for broker fee: {raw}", raw)
            return
        if fee < 0:
            preview.add_error(fm.BROKER_FEE, "Broker fee cannot be negative", raw)
            return
        fee = to_stored_precision(fee)
        if fee is None:
            preview.add_error(fm.BROKER_FEE, f"Broker fee is out of range: {raw}", raw)
            return
        preview.broker_fee = fee

    def _check_notes(self, preview: TransactionPreviewRow, raw: Optional[str]) -> None:
        if _blank(raw):
            return
        notes = str(raw).strip()
        if len(notes) > MAX_NOTES_LENGTH:
            preview.add_error(fm.NOTES, f"Notes cannot exceed {MAX_NOTES_LENGTH} characters",
                              notes[:50] + "...")
            return
        preview.notes = notes


def sort_key(preview: TransactionPreviewRow) -> Tuple[date, int, int]:
    """Chronological order with BUYs ahead of SELLs on the same day."""
    return (preview.transaction_date, 0 if preview.type == "BUY" else 1, preview.row_number)
