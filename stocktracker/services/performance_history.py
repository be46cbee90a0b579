"""
Portfolio value over time.

For every business day in the requested range the holdings as of that
day are valued at that day's close. Closes missing for a day are carried
forward from the last known close, seeded with the symbol's own trade
prices so a symbol without market history still has a value.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

import pandas as pd

from stocktracker.context import RequestContext
from stocktracker.exceptions import InvalidInputError
from stocktracker.services.portfolio_calculator import PositionBook, chronological
from stocktracker.services.price_service import PriceHistorySource, normalize_index

logger = logging.getLogger(__name__)

TIME_RANGES = ("7d", "1mo", "3mo", "ytd", "1y", "all")

# Extra history fetched before the range so the first day can be forward-filled
LOOKBACK_DAYS = 10


@dataclass
class PerformancePoint:
    date: date
    total_value: float
    daily_change: float
    daily_change_percent: float


def range_start(time_range: str, today: date, first_trade: Optional[date] = None) -> date:
    if time_range == "7d":
        return today - timedelta(days=7)
    if time_range == "1mo":
        return (pd.Timestamp(today) - pd.DateOffset(months=1)).date()
    if time_range == "3mo":
        return (pd.Timestamp(today) - pd.DateOffset(months=3)).date()
    if time_range == "ytd":
        return date(today.year, 1, 1)
    if time_range == "1y":
        return (pd.Timestamp(today) - pd.DateOffset(years=1)).date()
    if time_range == "all":
        return first_trade or today
    raise InvalidInputError(f"Invalid range '{time_range}'. Expected one of: {', '.join(TIME_RANGES)}")


class PerformanceHistoryBuilder:
    """Builds the daily portfolio value series for a time range."""

    def __init__(self, history: PriceHistorySource, include_fees: Optional[bool] = None):
        self.history = history
        self.include_fees = include_fees

    def _trade_prices(self, transactions: List) -> pd.DataFrame:
        """Last trade price per symbol per day."""
        records: Dict[str, Dict[pd.Timestamp, float]] = {}
        for tx in chronological(transactions):
            records.setdefault(tx.symbol, {})[pd.Timestamp(tx.transaction_date)] = float(tx.price_per_share)
        return pd.DataFrame(records)

    def _closes(self, symbols: List[str], start: date, end: date) -> pd.DataFrame:
        try:
            return normalize_index(self.history.get_closes(symbols, start, end))
        except Exception as e:
            logger.warning(f"[PerformanceHistory] Price history unavailable, using trade prices only: {e}")
            return pd.DataFrame()

    def build(self, transactions: List, time_range: str, ctx: RequestContext) -> List[PerformancePoint]:
        if time_range not in TIME_RANGES:
            raise InvalidInputError(f"Invalid range '{time_range}'. Expected one of: {', '.join(TIME_RANGES)}")
        if not transactions:
            return []

        ordered = chronological(transactions)
        start = range_start(time_range, ctx.today, ordered[0].transaction_date)
        days = pd.bdate_range(start=start, end=ctx.today)
        if len(days) == 0:
            return []

        symbols = sorted({tx.symbol for tx in ordered})
        closes = self._closes(symbols, start - timedelta(days=LOOKBACK_DAYS), ctx.today)
        trades = self._trade_prices(ordered)

        index = days.union(trades.index).union(closes.index) if not closes.empty else days.union(trades.index)
        prices = closes.reindex(index) if not closes.empty else pd.DataFrame(index=index)
        prices = prices.combine_first(trades.reindex(index)).ffill()

        book = PositionBook(include_fees=self.include_fees)
        pending = iter(ordered)
        next_tx = next(pending, None)

        points: List[PerformancePoint] = []
        previous_value: Optional[float] = None
        for day in days:
            while next_tx is not None and pd.Timestamp(next_tx.transaction_date) <= day:
                book.apply(next_tx)
                next_tx = next(pending, None)

            total = 0.0
            for symbol, position in book.open_positions().items():
                price = prices.at[day, symbol] if symbol in prices.columns else None
                if price is None or pd.isna(price):
                    continue
                total += float(position.shares) * float(price)
            total = round(total, 2)

            if previous_value is None:
                change, change_pct = 0.0, 0.0
            else:
                change = round(total - previous_value, 2)
                change_pct = round(change / previous_value * 100, 2) if previous_value else 0.0
            points.append(PerformancePoint(day.date(), total, change, change_pct))
            previous_value = total

        logger.info(f"[PerformanceHistory] {len(points)} points for range {time_range}")
        return points
