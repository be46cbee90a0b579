"""
Portfolio calculation from transaction history.

Holdings are derived on demand by folding a user's transactions in
chronological order with the weighted-average-cost method: a BUY adds
shares and cost; a SELL removes shares and reduces total cost in
proportion, so the average cost of the remaining shares never changes.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

import pandas as pd

from stocktracker.config import settings
from stocktracker.context import RequestContext
from stocktracker.exceptions import StockTrackerError
from stocktracker.services.price_service import PriceHistorySource
from stocktracker.services.ticker_resolver import Quote, TickerResolver

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")
SHARE_PLACES = Decimal("0.0001")
SPARKLINE_POINTS = 52

PRICE_LIVE = "live"
PRICE_STALE = "stale"
PRICE_UNAVAILABLE = "unavailable"


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator x 100, 0 when the denominator is 0."""
    if denominator == 0:
        return ZERO.quantize(CENTS)
    return money(numerator / denominator * HUNDRED)


def chronological(transactions: Iterable) -> List:
    """Sort by date, BUYs before SELLs on the same day, then by id."""
    return sorted(
        transactions,
        key=lambda tx: (tx.transaction_date, 0 if tx.type == "BUY" else 1, getattr(tx, "id", None) or 0),
    )


@dataclass
class Position:
    symbol: str
    shares: Decimal = ZERO
    total_cost: Decimal = ZERO
    company_name: Optional[str] = None

    @property
    def average_cost(self) -> Decimal:
        if self.shares == 0:
            return ZERO
        return self.total_cost / self.shares


class PositionBook:
    """Running weighted-average-cost positions, one per symbol."""

    def __init__(self, include_fees: Optional[bool] = None):
        self.include_fees = settings.include_fees_in_cost_basis if include_fees is None else include_fees
        self.positions: Dict[str, Position] = {}

    def apply(self, tx) -> None:
        position = self.positions.get(tx.symbol)
        if position is None:
            position = self.positions[tx.symbol] = Position(symbol=tx.symbol)
        if getattr(tx, "company_name", None):
            position.company_name = tx.company_name

        shares = Decimal(tx.shares)
        if tx.type == "BUY":
            position.shares += shares
            position.total_cost += shares * Decimal(tx.price_per_share)
            if self.include_fees:
                position.total_cost += Decimal(tx.broker_fee or 0)
            return

        before = position.shares
        if shares > before:
            # Rejected at validation time; only legacy rows can get here
            logger.warning(
                f"[PortfolioCalculator] SELL of {shares} {tx.symbol} on {tx.transaction_date} "
                f"exceeds {before} held, clamping to zero"
            )
            shares = before
        remaining = before - shares
        position.total_cost = position.total_cost * remaining / before if before > 0 else ZERO
        position.shares = remaining

    def open_positions(self) -> Dict[str, Position]:
        return {symbol: p for symbol, p in self.positions.items() if p.shares > 0}


def fold_positions(transactions: Iterable, as_of: Optional[date] = None,
                   include_fees: Optional[bool] = None) -> Dict[str, Position]:
    """Open positions after applying every transaction dated on or before ``as_of``."""
    book = PositionBook(include_fees=include_fees)
    for tx in chronological(transactions):
        if as_of is not None and tx.transaction_date > as_of:
            break
        book.apply(tx)
    return book.open_positions()


class SharesLedger:
    """
    Signed share movements per symbol, used to decide whether a SELL is
    covered by holdings as of its date and at every later date.
    """

    def __init__(self, transactions: Iterable = ()):
        self._events: Dict[str, List[tuple]] = defaultdict(list)
        for tx in transactions:
            self.add(tx.symbol, tx.transaction_date, tx.type, Decimal(tx.shares))

    def add(self, symbol: str, on: date, tx_type: str, shares: Decimal) -> None:
        signed = shares if tx_type == "BUY" else -shares
        self._events[symbol].append((on, 0 if tx_type == "BUY" else 1, signed))

    def available(self, symbol: str, on: date) -> Decimal:
        """Shares that can be sold on ``on`` without any running total going negative."""
        running = ZERO
        through = ZERO
        later_min: Optional[Decimal] = None
        for event_date, _, signed in sorted(self._events.get(symbol, ()), key=lambda e: (e[0], e[1])):
            running += signed
            if event_date <= on:
                through = running
            else:
                later_min = running if later_min is None else min(later_min, running)
        return through if later_min is None else min(through, later_min)

    def is_consistent(self, symbol: str) -> bool:
        running = ZERO
        for _, _, signed in sorted(self._events.get(symbol, ()), key=lambda e: (e[0], e[1])):
            running += signed
            if running < 0:
                return False
        return True


@dataclass
class Holding:
    symbol: str
    company_name: Optional[str]
    shares: Decimal
    average_cost: Decimal
    cost_basis: Decimal
    last_price: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    total_return_dollars: Optional[Decimal] = None
    total_return_percent: Optional[Decimal] = None
    day_change: Optional[Decimal] = None
    day_change_percent: Optional[Decimal] = None
    seven_day_return_percent: Decimal = ZERO
    weight: Decimal = ZERO
    sparkline: List[float] = field(default_factory=list)
    price_status: str = PRICE_LIVE


@dataclass
class PortfolioSummary:
    holdings: List[Holding] = field(default_factory=list)
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_return_dollars: Decimal = ZERO
    total_return_percent: Decimal = ZERO
    day_change: Decimal = ZERO
    day_change_percent: Decimal = ZERO
    annualized_return_percent: Decimal = ZERO
    investment_years: Decimal = ZERO
    prices_updated_at: Optional[datetime] = None
    degraded: bool = False
    unpriced_symbols: List[str] = field(default_factory=list)


def annualized_return(total_return_percent: Decimal, first_date: Optional[date], today: date) -> Decimal:
    """Compound annual return; the simple return when held under ~5 weeks."""
    if first_date is None:
        return ZERO
    years = (today - first_date).days / 365.25
    simple = float(total_return_percent) / 100
    if years < 0.1:
        return money(Decimal(str(simple * 100)))
    if 1 + simple <= 0:
        return Decimal("-100.00")
    return money(Decimal(str(((1 + simple) ** (1 / years) - 1) * 100)))


class PortfolioAggregator:
    """Folds transactions into holdings and values them with live quotes."""

    def __init__(
        self,
        resolver: TickerResolver,
        history: Optional[PriceHistorySource] = None,
        include_fees: Optional[bool] = None,
    ):
        self.resolver = resolver
        self.history = history
        self.include_fees = include_fees

    def _quotes(self, symbols: List[str]) -> Dict[str, Optional[Quote]]:
        outcomes = self.resolver.resolve_many(symbols)
        quotes: Dict[str, Optional[Quote]] = {}
        for symbol in symbols:
            outcome = outcomes.get(symbol)
            if isinstance(outcome, Quote):
                quotes[symbol] = outcome
                continue
            if isinstance(outcome, StockTrackerError):
                logger.warning(f"[PortfolioAggregator] Quote unavailable for {symbol}: {outcome.message}")
            quotes[symbol] = self.resolver.last_known(symbol)
        return quotes

    def _recent_closes(self, symbols: List[str], today: date) -> pd.DataFrame:
        if self.history is None or not symbols:
            return pd.DataFrame()
        try:
            return self.history.get_closes(symbols, today - timedelta(days=365), today)
        except Exception as e:
            # Sparkline and 7-day return are best effort
            logger.warning(f"[PortfolioAggregator] Price history unavailable: {e}")
            return pd.DataFrame()

    @staticmethod
    def _seven_day_return(closes: pd.Series, last_price: Decimal, today: date) -> Decimal:
        window = closes[closes.index >= pd.Timestamp(today - timedelta(days=7))]
        if window.empty or float(window.iloc[0]) <= 0:
            return ZERO.quantize(CENTS)
        start = Decimal(str(float(window.iloc[0])))
        return percent(last_price - start, start)

    @staticmethod
    def _sparkline(closes: pd.Series) -> List[float]:
        if closes.empty:
            return []
        step = max(1, len(closes) // SPARKLINE_POINTS)
        sampled = closes.iloc[::step]
        if sampled.index[-1] != closes.index[-1]:
            sampled = pd.concat([sampled, closes.iloc[-1:]])
        return [round(float(v), 2) for v in sampled]

    def build(self, transactions: List, ctx: RequestContext) -> PortfolioSummary:
        positions = fold_positions(transactions, include_fees=self.include_fees)
        summary = PortfolioSummary()
        if not positions:
            return summary

        symbols = sorted(positions)
        quotes = self._quotes(symbols)
        closes = self._recent_closes(symbols, ctx.today)

        previous_value = ZERO
        values: Dict[str, Decimal] = {}
        for symbol in symbols:
            position = positions[symbol]
            holding = Holding(
                symbol=symbol,
                company_name=position.company_name,
                shares=position.shares.quantize(SHARE_PLACES),
                average_cost=money(position.average_cost),
                cost_basis=money(position.total_cost),
            )
            quote = quotes.get(symbol)
            if quote is None:
                holding.price_status = PRICE_UNAVAILABLE
                summary.unpriced_symbols.append(symbol)
                summary.holdings.append(holding)
                continue

            holding.price_status = PRICE_STALE if quote.stale else PRICE_LIVE
            holding.company_name = holding.company_name or quote.company_name
            holding.last_price = money(quote.price)
            current_value = position.shares * quote.price
            holding.current_value = money(current_value)
            holding.total_return_dollars = money(current_value - position.total_cost)
            holding.total_return_percent = percent(current_value - position.total_cost, position.total_cost)
            if quote.previous_close:
                holding.previous_close = money(quote.previous_close)
                holding.day_change = money((quote.price - quote.previous_close) * position.shares)
                holding.day_change_percent = percent(quote.price - quote.previous_close, quote.previous_close)
                previous_value += position.shares * quote.previous_close
            else:
                previous_value += current_value

            if symbol in closes.columns:
                series = closes[symbol].dropna()
                holding.seven_day_return_percent = self._seven_day_return(series, quote.price, ctx.today)
                holding.sparkline = self._sparkline(series)

            values[symbol] = current_value
            summary.total_value += current_value
            summary.total_cost += position.total_cost
            if summary.prices_updated_at is None or quote.as_of > summary.prices_updated_at:
                summary.prices_updated_at = quote.as_of
            summary.holdings.append(holding)

        total_value = summary.total_value
        for holding in summary.holdings:
            if holding.symbol in values:
                holding.weight = percent(values[holding.symbol], total_value)

        summary.degraded = bool(summary.unpriced_symbols)
        summary.total_return_dollars = money(summary.total_value - summary.total_cost)
        summary.total_return_percent = percent(summary.total_value - summary.total_cost, summary.total_cost)
        summary.day_change = money(summary.total_value - previous_value)
        summary.day_change_percent = percent(summary.total_value - previous_value, previous_value)

        first_date = min(tx.transaction_date for tx in transactions)
        summary.investment_years = money(Decimal((ctx.today - first_date).days) / Decimal("365.25"))
        summary.annualized_return_percent = annualized_return(summary.total_return_percent, first_date, ctx.today)
        summary.total_value = money(summary.total_value)
        summary.total_cost = money(summary.total_cost)
        if summary.prices_updated_at is None:
            summary.prices_updated_at = datetime.now(timezone.utc)

        if summary.degraded:
            logger.warning(f"[PortfolioAggregator] Portfolio degraded, unpriced: {summary.unpriced_symbols}")
        return summary
